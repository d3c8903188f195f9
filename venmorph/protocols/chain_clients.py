from typing import Protocol, List, Any

from venmorph.models.models import PaymentRequest, LedgerTransaction


class LedgerChainClient(Protocol):
    """Protocol defining the XRPL queries the attestor depends on"""

    async def connect(self) -> None:
        """Open the connection to the ledger endpoint"""
        ...

    async def close(self) -> None:
        """Release the connection. Safe to call when not connected."""
        ...

    async def get_validated_ledger_index(self) -> int:
        """Return the sequence number of the most recent validated ledger.

        Raises:
            TransientNetworkException: the endpoint could not be reached
        """
        ...

    async def fetch_ledger(self, ledger_index: int) -> List[LedgerTransaction]:
        """Return the transactions of a validated ledger, in the order the ledger lists them.

        Args:
            ledger_index (int): Ledger sequence number

        Raises:
            LedgerNotFoundException: ledger_index is beyond the validated ledger
            TransientNetworkException: the endpoint could not be reached
        """
        ...


class EVMChainClient(Protocol):
    """Protocol defining the RequestManager contract surface the attestor depends on"""

    async def connect(self) -> None:
        """Verify the RPC endpoint is reachable"""
        ...

    async def close(self) -> None:
        ...

    async def get_total_request_count(self) -> int:
        """Number of requests ever created. Request ids are 0..count-1."""
        ...

    async def get_request(self, request_id: int) -> PaymentRequest:
        """Read a request from the contract.

        Raises:
            RequestNotFoundException: the id has not been assigned
            TransientNetworkException: the RPC endpoint could not be reached
        """
        ...

    async def calculate_xrp_amount(self, asset_symbol: str, asset_amount: int) -> int:
        """Convert an asset amount to XRP drops at the contract's current exchange rate"""
        ...

    async def submit_attestation(self, request_id: int, tx_hash: str, amount: int, timestamp: int) -> Any:
        """Sign and send a payment attestation, then wait for it to be confirmed.

        Not idempotent: every call sends a new transaction. Callers must dedup.

        Args:
            request_id (int): Request being settled
            tx_hash (str): XRPL transaction hash (64 hex chars)
            amount (int): Delivered amount in drops
            timestamp (int): Payment close time in unix seconds

        Returns:
            The transaction receipt

        Raises:
            SubmissionFailedException: revert, insufficient funds or network failure
        """
        ...
