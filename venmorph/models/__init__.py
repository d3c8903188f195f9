from ..database import Base
from .models import (
    RequestStatus,
    PaymentRequest,
    LedgerTransaction,
    AttestationOutcome,
    AttestationResult,
    RIPPLE_EPOCH_OFFSET,
)
from .attestation_results import AttestationResults
