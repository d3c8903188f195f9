from sqlalchemy import Column, String, BigInteger, Integer, Text, DateTime, CheckConstraint, Index, func
from ..database import Base

class AttestationResults(Base):
    __tablename__ = 'attestation_results'

    id = Column(Integer, primary_key=True, autoincrement=True)
    xrpl_tx_hash = Column(String(64), nullable=False)
    request_id = Column(BigInteger, nullable=False)
    outcome = Column(String(20), nullable=False)
    paid_amount_drops = Column(BigInteger)
    response_tx_hash = Column(String(66))
    notes = Column(Text)
    recorded_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    __table_args__ = (
        CheckConstraint(
            "outcome IN ('SUBMITTED', 'FAILED', 'DUPLICATE')",
            name='valid_attestation_outcome'
        ),
        Index('idx_attestation_results_request', 'request_id'),
        Index('idx_attestation_results_tx', 'xrpl_tx_hash'),
    )
