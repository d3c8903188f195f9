from typing import Dict, Iterable, List, Optional, Set

from loguru import logger

from venmorph.models.models import PaymentRequest
from venmorph.protocols.chain_clients import EVMChainClient
from venmorph.utilities.exceptions import RequestNotFoundException, TransientNetworkException


class RequestCache:
    """Best-effort mirror of the PENDING requests on the RequestManager contract.

    The cache only grows from newly created requests and shrinks on eviction. Cached entries are
    never re-read from the chain, so a request cancelled by its creator stays cached until an
    attestation for it is rejected or it is evicted.
    """

    def __init__(self, evm_client: EVMChainClient):
        self._evm_client = evm_client
        self._requests: Dict[int, PaymentRequest] = {}
        # Ids below this have been read at least once
        self._high_water_mark = 0
        # Ids that failed to load and are retried on the next refresh
        self._unloaded: Set[int] = set()

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, request_id: int) -> bool:
        return request_id in self._requests

    @property
    def high_water_mark(self) -> int:
        return self._high_water_mark

    @property
    def unloaded_ids(self) -> Set[int]:
        return set(self._unloaded)

    def get(self, request_id: int) -> Optional[PaymentRequest]:
        return self._requests.get(request_id)

    def pending_requests(self) -> List[PaymentRequest]:
        """Snapshot of cached requests in id order"""
        return [self._requests[request_id] for request_id in sorted(self._requests)]

    async def load(self, batch_size: int) -> int:
        """Read the most recent batch_size requests and cache the PENDING ones.

        Returns:
            int: number of requests added
        """
        total = await self._evm_client.get_total_request_count()
        logger.info(f"RequestCache.load: Total requests in contract: {total}")

        start = max(0, total - batch_size)
        added = await self._load_ids(range(start, total))
        self._high_water_mark = max(self._high_water_mark, total)

        logger.info(f"RequestCache.load: Loaded {len(self._requests)} pending requests")
        return added

    async def refresh(self) -> int:
        """Cache PENDING requests created since the last load or refresh.

        Ids that previously failed to load are retried first.

        Returns:
            int: number of requests added
        """
        total = await self._evm_client.get_total_request_count()

        retry_ids = sorted(self._unloaded)
        new_ids = range(self._high_water_mark, total)
        self._unloaded.clear()
        added = await self._load_ids([*retry_ids, *new_ids], announce=True)
        self._high_water_mark = max(self._high_water_mark, total)
        return added

    def remove(self, request_id: int) -> Optional[PaymentRequest]:
        removed = self._requests.pop(request_id, None)
        if removed is not None:
            logger.debug(f"RequestCache.remove: Evicted request {request_id}")
        return removed

    def evict_expired(self, now: int) -> List[int]:
        """Drop requests whose expiry is before now (unix seconds); they can no longer be paid"""
        expired = [request_id for request_id, request in self._requests.items() if request.is_expired(now)]
        for request_id in expired:
            del self._requests[request_id]
        if expired:
            logger.info(f"RequestCache.evict_expired: Evicted expired requests {expired}")
        return expired

    async def _load_ids(self, request_ids: Iterable[int], announce: bool = False) -> int:
        added = 0
        for request_id in request_ids:
            try:
                request = await self._evm_client.get_request(request_id)
            except (RequestNotFoundException, TransientNetworkException) as e:
                logger.warning(f"RequestCache._load_ids: Failed to load request {request_id}: {e}")
                self._unloaded.add(request_id)
                continue

            if not request.is_pending:
                logger.debug(f"RequestCache._load_ids: Skipping request {request_id} with status {request.status.name}")
                continue

            if request_id not in self._requests:
                added += 1
                if announce:
                    logger.info(f"RequestCache._load_ids: New pending request detected: {request_id}")
            self._requests[request_id] = request
        return added
