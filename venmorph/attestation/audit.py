from typing import List

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from venmorph.database import create_db_engine, create_session_factory, init_db
from venmorph.models.attestation_results import AttestationResults
from venmorph.models.models import AttestationResult


class AttestationAuditLog:
    """Write-only record of every attestation attempt.

    The log is never read back to restore in-memory state; it exists for operators.
    Database errors are logged and do not interrupt attestation.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str) -> 'AttestationAuditLog':
        engine = create_db_engine(database_url)
        init_db(engine)
        return cls(create_session_factory(engine))

    def record(self, result: AttestationResult) -> None:
        row = AttestationResults(
            xrpl_tx_hash=result.xrpl_tx_hash,
            request_id=result.request_id,
            outcome=result.outcome.value,
            paid_amount_drops=result.paid_amount,
            response_tx_hash=result.response_tx_hash,
            notes=result.notes,
        )
        session = self._session_factory()
        try:
            session.add(row)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"AttestationAuditLog.record: Could not record {result.outcome.value} for request {result.request_id}: {e}")
        finally:
            session.close()

    def results_for_request(self, request_id: int) -> List[AttestationResults]:
        session = self._session_factory()
        try:
            query = select(AttestationResults).where(
                AttestationResults.request_id == request_id
            ).order_by(AttestationResults.id)
            return list(session.scalars(query))
        finally:
            session.close()
