from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from venmorph.utilities.exceptions import InvalidStatusTransitionException

# Seconds between the unix epoch and the XRPL epoch (2000-01-01T00:00:00Z)
RIPPLE_EPOCH_OFFSET = 946684800

# 10_000 basis points == 100%
BASIS_POINTS = 10_000
MAX_SLIPPAGE_BP = 1_000


class RequestStatus(Enum):
    """Status codes as stored by the RequestManager contract"""
    PENDING = 0
    PAID = 1
    CANCELLED = 2
    EXPIRED = 3

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING

    def can_transition_to(self, other: 'RequestStatus') -> bool:
        # PENDING -> {PAID, CANCELLED, EXPIRED}, nothing leaves a terminal state
        return self is RequestStatus.PENDING and other is not RequestStatus.PENDING


@dataclass(frozen=True)
class PaymentRequest:
    id: int
    creator: str
    recipient_xrpl: str
    asset_symbol: str
    asset_amount: int
    expiry: int
    slippage_bp: int
    status: RequestStatus
    paid_tx_hash: Optional[str] = None
    paid_amount: Optional[int] = None
    paid_timestamp: Optional[int] = None
    message: str = ''

    @property
    def is_pending(self) -> bool:
        return self.status is RequestStatus.PENDING

    def is_expired(self, at_timestamp: int) -> bool:
        return at_timestamp > self.expiry

    def transition(self, new_status: RequestStatus) -> 'PaymentRequest':
        if not self.status.can_transition_to(new_status):
            raise InvalidStatusTransitionException(self.id, self.status.name, new_status.name)
        return replace(self, status=new_status)

    def mark_paid(self, tx_hash: str, paid_amount: int, paid_timestamp: int) -> 'PaymentRequest':
        """Copy of this request as the contract records it after an accepted attestation"""
        paid = self.transition(RequestStatus.PAID)
        return replace(paid, paid_tx_hash=tx_hash, paid_amount=paid_amount, paid_timestamp=paid_timestamp)


@dataclass(frozen=True)
class LedgerTransaction:
    hash: str
    account: str
    destination: Optional[str]
    amount: Optional[int]
    ledger_index: int
    validated: bool
    destination_tag: Optional[int] = None
    transaction_type: str = 'Payment'
    transaction_result: Optional[str] = None
    date: Optional[int] = None

    @property
    def is_successful_xrp_payment(self) -> bool:
        return (
            self.validated
            and self.transaction_type == 'Payment'
            and self.transaction_result == 'tesSUCCESS'
            and self.amount is not None
        )

    @property
    def unix_timestamp(self) -> Optional[int]:
        if self.date is None:
            return None
        return self.date + RIPPLE_EPOCH_OFFSET

    @property
    def close_time(self) -> Optional[datetime]:
        if self.date is None:
            return None
        return datetime.fromtimestamp(self.unix_timestamp, tz=timezone.utc)


class AttestationOutcome(Enum):
    SUBMITTED = 'SUBMITTED'
    FAILED = 'FAILED'
    DUPLICATE = 'DUPLICATE'


@dataclass(frozen=True)
class AttestationResult:
    request_id: int
    xrpl_tx_hash: str
    outcome: AttestationOutcome
    paid_amount: Optional[int] = None
    response_tx_hash: Optional[str] = None
    notes: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is AttestationOutcome.SUBMITTED
