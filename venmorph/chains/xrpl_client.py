"""
XRPL side of the attestor.

XRPLLedgerClient wraps an xrpl-py AsyncWebsocketClient and turns `server_info` and
`ledger` responses into LedgerTransaction records. Parsing is kept in module-level
functions so it can be exercised against recorded payloads without a network.

Two response shapes are supported:
- API v1: transaction fields at the top level, metadata under `metaData`, amount under `Amount`
- API v2: transaction fields under `tx_json`, metadata under `meta`, amount under `DeliverMax`
"""
import asyncio
from dataclasses import replace
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from loguru import logger
from xrpl.asyncio.clients import AsyncWebsocketClient
from xrpl.constants import XRPLException
from xrpl.models.requests import Ledger, ServerInfo
from xrpl.models.response import Response

from venmorph.models.models import LedgerTransaction
from venmorph.protocols.chain_clients import LedgerChainClient
from venmorph.utilities.exceptions import LedgerNotFoundException, TransientNetworkException

LEDGER_NOT_FOUND_ERRORS = {'lgrNotFound', 'lgrIdxInvalid'}


def _parse_drops(value: Any) -> Optional[int]:
    """XRP amounts are strings of drops; issued currency amounts are dicts and are ignored"""
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def parse_ledger_transaction(entry: Dict[str, Any], ledger_index: int, validated: bool = True) -> LedgerTransaction:
    """Build a LedgerTransaction from one entry of an expanded `ledger` response"""
    if 'tx_json' in entry:
        tx_json = entry['tx_json']
        meta = entry.get('meta') or {}
        tx_hash = entry.get('hash') or tx_json.get('hash')
    else:
        tx_json = entry
        meta = entry.get('metaData') or entry.get('meta') or {}
        tx_hash = entry.get('hash')

    # Prefer what was actually delivered so partial payments cannot overstate the amount
    amount = _parse_drops(meta.get('delivered_amount'))
    if amount is None and 'delivered_amount' not in meta:
        amount = _parse_drops(tx_json.get('Amount', tx_json.get('DeliverMax')))

    destination_tag = tx_json.get('DestinationTag')

    return LedgerTransaction(
        hash=tx_hash,
        account=tx_json.get('Account'),
        destination=tx_json.get('Destination'),
        amount=amount,
        ledger_index=ledger_index,
        validated=validated,
        destination_tag=int(destination_tag) if destination_tag is not None else None,
        transaction_type=tx_json.get('TransactionType'),
        transaction_result=meta.get('TransactionResult'),
        date=tx_json.get('date', entry.get('date')),
    )


def parse_validated_ledger_index(result: Dict[str, Any]) -> int:
    validated_ledger = result.get('info', {}).get('validated_ledger')
    if not validated_ledger or 'seq' not in validated_ledger:
        raise XRPLException(f"server_info returned no validated ledger: {result.get('info', {}).get('server_state')}")
    return int(validated_ledger['seq'])


def parse_ledger_transactions(result: Dict[str, Any], ledger_index: int) -> List[LedgerTransaction]:
    ledger = result.get('ledger', {})
    validated = bool(result.get('validated', ledger.get('closed', False)))
    close_time = ledger.get('close_time')

    transactions = []
    for entry in ledger.get('transactions') or []:
        if isinstance(entry, str):
            # Unexpanded ledgers only list hashes
            logger.warning(f"parse_ledger_transactions: Ledger {ledger_index} returned unexpanded transaction {entry}")
            continue
        tx = parse_ledger_transaction(entry, ledger_index, validated)
        if tx.date is None and close_time is not None:
            tx = replace(tx, date=close_time)
        transactions.append(tx)
    return transactions


class XRPLLedgerClient(LedgerChainClient):
    """XRPL websocket client implementing the LedgerChainClient protocol"""

    def __init__(self, url: str):
        self.url = url
        self._client = AsyncWebsocketClient(url)

    async def connect(self) -> None:
        if self._client.is_open():
            return
        try:
            await self._client.open()
        except (XRPLException, OSError, asyncio.TimeoutError) as e:
            raise TransientNetworkException(self.url, str(e))
        logger.info(f"XRPLLedgerClient.connect: Connected to {self.url}")

    async def close(self) -> None:
        if self._client.is_open():
            await self._client.close()
            logger.info(f"XRPLLedgerClient.close: Disconnected from {self.url}")

    async def _request(self, request) -> Response:
        # Reopen a dropped websocket before each request
        await self.connect()
        try:
            return await self._client.request(request)
        except (XRPLException, OSError, asyncio.TimeoutError) as e:
            raise TransientNetworkException(self.url, str(e))

    async def get_validated_ledger_index(self) -> int:
        response = await self._request(ServerInfo())
        if not response.is_successful():
            raise TransientNetworkException(self.url, f"server_info failed: {response.result.get('error')}")
        try:
            return parse_validated_ledger_index(response.result)
        except XRPLException as e:
            raise TransientNetworkException(self.url, str(e))

    async def fetch_ledger(self, ledger_index: int) -> List[LedgerTransaction]:
        response = await self._request(Ledger(ledger_index=ledger_index, transactions=True, expand=True))
        if not response.is_successful():
            error = response.result.get('error')
            if error in LEDGER_NOT_FOUND_ERRORS:
                raise LedgerNotFoundException(ledger_index)
            raise TransientNetworkException(self.url, f"ledger {ledger_index} failed: {error}")

        if not response.result.get('validated', False):
            raise LedgerNotFoundException(ledger_index)

        return parse_ledger_transactions(response.result, ledger_index)


async def ledger_stream(
        client: LedgerChainClient,
        after_ledger_index: int
    ) -> AsyncIterator[Tuple[int, List[LedgerTransaction]]]:
    """Yield (ledger_index, transactions) for every validated ledger after the watermark.

    The validated ledger index is read once when iteration starts, so a single pass is bounded.
    Iteration stops at the first failure and the exception propagates; restarting the stream
    from the last yielded index resumes without gaps.

    Args:
        client (LedgerChainClient): Ledger source
        after_ledger_index (int): Watermark; the first ledger yielded is after_ledger_index + 1
    """
    current = await client.get_validated_ledger_index()
    for ledger_index in range(after_ledger_index + 1, current + 1):
        transactions = await client.fetch_ledger(ledger_index)
        yield ledger_index, transactions
