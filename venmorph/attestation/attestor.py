"""
The attestor service ties the XRPL and EVM sides together.

Lifecycle:
    UNINITIALIZED -> INITIALIZING -> RUNNING -> STOPPING -> STOPPED

While RUNNING two periodic tasks share one event loop:
1. Request refresh: picks up requests created since the last refresh and drops expired ones
2. Ledger poll: walks every validated ledger after the watermark, in order, and evaluates
   each transaction against the cached requests

Each tick runs to completion; errors inside a tick are logged and the loop carries on with
the next tick. Stopping clears the running flag, lets in-flight ticks finish and closes
the ledger connection.

All mutable state (request cache, processed transaction hashes, submitted request ids and
the ledger watermark) belongs to a single AttestorService and is only touched from its tasks.
"""
import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Set

from loguru import logger

from venmorph.attestation.audit import AttestationAuditLog
from venmorph.attestation.matcher import TransactionMatcher
from venmorph.attestation.request_cache import RequestCache
from venmorph.attestation.submitter import AttestationSubmitter
from venmorph.chains.xrpl_client import ledger_stream
from venmorph.configuration.configuration import AttestorConfig
from venmorph.models.models import AttestationResult, LedgerTransaction
from venmorph.protocols.chain_clients import EVMChainClient, LedgerChainClient
from venmorph.utilities.exceptions import VenmorphException


class AttestorState(Enum):
    UNINITIALIZED = 'UNINITIALIZED'
    INITIALIZING = 'INITIALIZING'
    RUNNING = 'RUNNING'
    STOPPING = 'STOPPING'
    STOPPED = 'STOPPED'


class AttestorService:
    def __init__(
            self,
            config: AttestorConfig,
            ledger_client: LedgerChainClient,
            evm_client: EVMChainClient,
            audit_log: Optional[AttestationAuditLog] = None,
            clock: Callable[[], float] = time.time,
        ):
        self.config = config
        self.ledger_client = ledger_client
        self.evm_client = evm_client
        self.request_cache = RequestCache(evm_client)
        self.matcher = TransactionMatcher(evm_client)
        self.submitter = AttestationSubmitter(evm_client, audit_log)
        self._clock = clock

        self.state = AttestorState.UNINITIALIZED
        self.last_processed_ledger: Optional[int] = None
        self.processed_transactions: Set[str] = set()
        self.is_running = False
        self._wakeup = asyncio.Event()
        self._tasks: List[asyncio.Task] = []
        self._stopping: Optional[asyncio.Task] = None

    async def initialize(self) -> None:
        """Validate config, connect both chains, load the cache and record the starting watermark.

        Raises:
            ConfigurationException: configuration is incomplete or invalid
            VenmorphException: either chain could not be reached
        """
        self._set_state(AttestorState.INITIALIZING)
        self.config.validate()

        await self.ledger_client.connect()
        await self.evm_client.connect()

        await self.request_cache.load(self.config.batch_size)

        self.last_processed_ledger = await self.ledger_client.get_validated_ledger_index()
        logger.info(f"AttestorService.initialize: Starting from ledger {self.last_processed_ledger}")

    async def start(self) -> None:
        """Initialize and launch the periodic tasks"""
        await self.initialize()
        self.is_running = True
        self._set_state(AttestorState.RUNNING)

        logger.info("AttestorService.start: Starting attestor monitoring")
        self._tasks = [
            asyncio.create_task(
                self._run_periodically('request refresh', self.refresh_requests, self.config.request_refresh_interval),
                name='venmorph-request-refresh',
            ),
            asyncio.create_task(
                self._run_periodically('ledger poll', self.poll_ledgers, self.config.poll_interval),
                name='venmorph-ledger-poll',
            ),
        ]

    async def stop(self) -> None:
        """Stop the service. Concurrent and repeated calls all wait for the same shutdown."""
        if self._stopping is None:
            self._stopping = asyncio.ensure_future(self._shutdown())
        await self._stopping

    async def _shutdown(self) -> None:
        logger.info("AttestorService.stop: Stopping attestor service")
        self._set_state(AttestorState.STOPPING)
        self.is_running = False
        self._wakeup.set()

        # In-flight ticks finish, sleeping loops wake up and exit
        await asyncio.gather(*self._tasks, return_exceptions=True)

        try:
            await self.ledger_client.close()
        finally:
            self._set_state(AttestorState.STOPPED)

    async def _run_periodically(self, name: str, tick: Callable[[], Awaitable[None]], interval: float) -> None:
        while self.is_running:
            try:
                await tick()
            except Exception as e:
                logger.error(f"AttestorService._run_periodically: Error during {name}: {e}")

            if not self.is_running:
                break
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def refresh_requests(self) -> None:
        added = await self.request_cache.refresh()
        self.request_cache.evict_expired(int(self._clock()))
        if added:
            logger.info(f"AttestorService.refresh_requests: {added} new pending requests, {len(self.request_cache)} cached")

    async def poll_ledgers(self) -> None:
        """Process every validated ledger after the watermark.

        The watermark advances one ledger at a time after that ledger's transactions were evaluated.
        A failed ledger fetch ends the tick and the same ledger is fetched again on the next tick.
        """
        if self.last_processed_ledger is None:
            self.last_processed_ledger = await self.ledger_client.get_validated_ledger_index()
            return

        async for ledger_index, transactions in ledger_stream(self.ledger_client, self.last_processed_ledger):
            for tx in transactions:
                await self.process_transaction(tx)
            self._advance_watermark(ledger_index)

    def _advance_watermark(self, ledger_index: int) -> None:
        if self.last_processed_ledger is None or ledger_index > self.last_processed_ledger:
            self.last_processed_ledger = ledger_index

    async def process_transaction(self, tx: LedgerTransaction) -> Optional[AttestationResult]:
        """Evaluate one ledger transaction exactly once.

        The hash is only recorded after evaluation completes. Errors during evaluation (for example
        a failed price quote) propagate, which ends the ledger poll before the watermark passes this
        ledger, so the transaction is evaluated again on the next tick.
        """
        if tx.hash in self.processed_transactions:
            return None

        result = None
        if tx.is_successful_xrp_payment:
            try:
                result = await self.check_payment_transaction(tx)
            except VenmorphException as e:
                logger.error(f"AttestorService.process_transaction: Error processing transaction {tx.hash}, will retry: {e}")
                raise

        self.processed_transactions.add(tx.hash)
        return result

    async def check_payment_transaction(self, tx: LedgerTransaction) -> Optional[AttestationResult]:
        """Attest the first cached request the payment satisfies; one payment settles one request"""
        for request in self._candidates(tx):
            if not await self.matcher.match(tx, request):
                continue

            logger.info(f"AttestorService.check_payment_transaction: Payment found for request {request.id}: {tx.hash}")
            result = await self.submitter.submit(request, tx)
            if result.succeeded:
                self.request_cache.remove(request.id)
            return result
        return None

    def _candidates(self, tx: LedgerTransaction):
        if tx.destination_tag is not None:
            # The tag names the request directly
            request = self.request_cache.get(tx.destination_tag)
            return [request] if request is not None else []
        return [request for request in self.request_cache.pending_requests() if self.matcher.correlates(tx, request)]

    def _set_state(self, state: AttestorState) -> None:
        logger.debug(f"AttestorService._set_state: {self.state.value} -> {state.value}")
        self.state = state
