class VenmorphException(Exception):
    """Base class for attestor errors"""
    pass


class ConfigurationException(VenmorphException):
    """Raised when the attestor configuration is invalid"""
    pass


class MissingConfigurationException(ConfigurationException):
    def __init__(self, setting_name: str):
        self.setting_name = setting_name
        super().__init__(f"{setting_name} is required to start the attestor")


class TransientNetworkException(VenmorphException):
    """Raised when a chain endpoint cannot be reached or times out"""
    def __init__(self, endpoint: str, reason: str):
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"Network error talking to {endpoint}: {reason}")


class LedgerNotFoundException(VenmorphException):
    def __init__(self, ledger_index: int):
        self.ledger_index = ledger_index
        super().__init__(f"Ledger {ledger_index} is not available as a validated ledger")


class RequestNotFoundException(VenmorphException):
    def __init__(self, request_id: int):
        self.request_id = request_id
        super().__init__(f"Request {request_id} does not exist on the request manager contract")


class SubmissionFailedException(VenmorphException):
    """Raised when a payment attestation transaction could not be included on chain"""
    def __init__(self, request_id: int, reason: str):
        self.request_id = request_id
        self.reason = reason
        super().__init__(f"Attestation for request {request_id} failed: {reason}")


class InvalidStatusTransitionException(VenmorphException):
    def __init__(self, request_id: int, current_status: str, new_status: str):
        self.request_id = request_id
        super().__init__(f"Request {request_id} cannot move from {current_status} to {new_status}")
