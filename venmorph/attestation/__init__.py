from .request_cache import RequestCache
from .matcher import TransactionMatcher, minimum_acceptable_drops
from .submitter import AttestationSubmitter
from .audit import AttestationAuditLog
from .attestor import AttestorService, AttestorState
