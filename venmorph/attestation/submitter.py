from typing import Optional, Set

from loguru import logger

from venmorph.attestation.audit import AttestationAuditLog
from venmorph.models.models import AttestationOutcome, AttestationResult, LedgerTransaction, PaymentRequest
from venmorph.protocols.chain_clients import EVMChainClient
from venmorph.utilities.exceptions import SubmissionFailedException


class AttestationSubmitter:
    """Submits at most one attestation per request for the lifetime of the process.

    A request id is claimed before the chain call and released again if the call fails,
    so a failed submission stays eligible for exactly one later retry while a successful
    one is never repeated.
    """

    def __init__(self, evm_client: EVMChainClient, audit_log: Optional[AttestationAuditLog] = None):
        self._evm_client = evm_client
        self._audit_log = audit_log
        self._submitted: Set[int] = set()

    def has_submitted(self, request_id: int) -> bool:
        return request_id in self._submitted

    async def submit(self, request: PaymentRequest, tx: LedgerTransaction) -> AttestationResult:
        if request.id in self._submitted:
            logger.debug(f"AttestationSubmitter.submit: Request {request.id} already attested, ignoring {tx.hash}")
            return self._finish(AttestationResult(
                request_id=request.id,
                xrpl_tx_hash=tx.hash,
                outcome=AttestationOutcome.DUPLICATE,
                paid_amount=tx.amount,
                notes='attestation already submitted in this process',
            ))

        self._submitted.add(request.id)
        logger.info(f"AttestationSubmitter.submit: Submitting attestation for request {request.id} with {tx.hash}")
        try:
            receipt = await self._evm_client.submit_attestation(request.id, tx.hash, tx.amount, tx.unix_timestamp or 0)
        except SubmissionFailedException as e:
            self._submitted.discard(request.id)
            logger.error(f"AttestationSubmitter.submit: Failed to submit attestation for request {request.id}: {e.reason}")
            return self._finish(AttestationResult(
                request_id=request.id,
                xrpl_tx_hash=tx.hash,
                outcome=AttestationOutcome.FAILED,
                paid_amount=tx.amount,
                notes=e.reason,
            ))
        except Exception:
            # Unexpected failures release the claim too, then propagate
            self._submitted.discard(request.id)
            raise

        response_tx_hash = _receipt_hash(receipt)
        logger.info(f"AttestationSubmitter.submit: Attestation submitted for request {request.id}: {response_tx_hash}")
        return self._finish(AttestationResult(
            request_id=request.id,
            xrpl_tx_hash=tx.hash,
            outcome=AttestationOutcome.SUBMITTED,
            paid_amount=tx.amount,
            response_tx_hash=response_tx_hash,
        ))

    def _finish(self, result: AttestationResult) -> AttestationResult:
        if self._audit_log is not None:
            self._audit_log.record(result)
        return result


def _receipt_hash(receipt) -> Optional[str]:
    if receipt is None:
        return None
    tx_hash = receipt.get('transactionHash') if hasattr(receipt, 'get') else getattr(receipt, 'transactionHash', None)
    if tx_hash is None:
        return None
    return tx_hash if isinstance(tx_hash, str) else '0x' + bytes(tx_hash).hex()
