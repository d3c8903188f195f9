"""
EVM side of the attestor.

FlareRequestManagerClient talks to the RequestManager contract over JSON-RPC with
web3.py's AsyncWeb3 and signs attestations locally with eth_account.
"""
import asyncio
import json
from typing import Any, Optional, Sequence

import aiohttp
from eth_account import Account
from loguru import logger
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from venmorph.models.models import PaymentRequest, RequestStatus
from venmorph.protocols.chain_clients import EVMChainClient
from venmorph.utilities.exceptions import (
    RequestNotFoundException,
    SubmissionFailedException,
    TransientNetworkException,
)

# Seconds between block number checks while waiting for confirmations
CONFIRMATION_POLL_INTERVAL = 2

# aiohttp transport errors reach callers unwrapped by web3's async provider
RPC_ERRORS = (Web3Exception, aiohttp.ClientError, OSError, asyncio.TimeoutError)

REQUEST_MANAGER_ABI = json.loads('''[
    {"inputs":[{"internalType":"uint256","name":"_requestId","type":"uint256"}],
     "name":"getRequest","outputs":[{"components":[
        {"internalType":"uint256","name":"id","type":"uint256"},
        {"internalType":"address","name":"creator","type":"address"},
        {"internalType":"string","name":"recipientXRPL","type":"string"},
        {"internalType":"string","name":"assetSymbol","type":"string"},
        {"internalType":"uint256","name":"assetAmount","type":"uint256"},
        {"internalType":"uint256","name":"expiry","type":"uint256"},
        {"internalType":"uint16","name":"slippageBp","type":"uint16"},
        {"internalType":"uint8","name":"status","type":"uint8"},
        {"internalType":"bytes32","name":"paidTxHash","type":"bytes32"},
        {"internalType":"uint256","name":"paidAmount","type":"uint256"},
        {"internalType":"uint256","name":"paidTimestamp","type":"uint256"},
        {"internalType":"string","name":"message","type":"string"}
     ],"internalType":"struct RequestManager.Request","name":"","type":"tuple"}],
     "stateMutability":"view","type":"function"},
    {"inputs":[],"name":"getTotalRequests",
     "outputs":[{"internalType":"uint256","name":"","type":"uint256"}],
     "stateMutability":"view","type":"function"},
    {"inputs":[{"internalType":"string","name":"_assetSymbol","type":"string"},
               {"internalType":"uint256","name":"_assetAmount","type":"uint256"}],
     "name":"calculateXRPAmount",
     "outputs":[{"internalType":"uint256","name":"","type":"uint256"}],
     "stateMutability":"view","type":"function"},
    {"inputs":[{"internalType":"uint256","name":"_requestId","type":"uint256"},
               {"internalType":"bytes32","name":"_txHash","type":"bytes32"},
               {"internalType":"uint256","name":"_paidAmountXRP","type":"uint256"},
               {"internalType":"uint256","name":"_timestamp","type":"uint256"}],
     "name":"submitPaymentAttestation","outputs":[],
     "stateMutability":"nonpayable","type":"function"}
]''')

EMPTY_BYTES32 = b'\x00' * 32


def xrpl_hash_to_bytes32(tx_hash: str) -> bytes:
    """XRPL transaction hashes are 64 hex characters, i.e. exactly one bytes32"""
    raw = bytes.fromhex(tx_hash.removeprefix('0x'))
    if len(raw) != 32:
        raise ValueError(f"Expected a 32 byte transaction hash, got {len(raw)} bytes")
    return raw


def request_from_contract_tuple(values: Sequence[Any]) -> PaymentRequest:
    """Map the RequestManager.Request struct to a PaymentRequest"""
    (request_id, creator, recipient_xrpl, asset_symbol, asset_amount, expiry,
     slippage_bp, status, paid_tx_hash, paid_amount, paid_timestamp, message) = values

    status = RequestStatus(int(status))
    paid = status is RequestStatus.PAID and bytes(paid_tx_hash) != EMPTY_BYTES32
    return PaymentRequest(
        id=int(request_id),
        creator=creator,
        recipient_xrpl=recipient_xrpl,
        asset_symbol=asset_symbol,
        asset_amount=int(asset_amount),
        expiry=int(expiry),
        slippage_bp=int(slippage_bp),
        status=status,
        paid_tx_hash=bytes(paid_tx_hash).hex().upper() if paid else None,
        paid_amount=int(paid_amount) if paid else None,
        paid_timestamp=int(paid_timestamp) if paid else None,
        message=message,
    )


class FlareRequestManagerClient(EVMChainClient):
    """RequestManager contract client implementing the EVMChainClient protocol"""

    def __init__(
            self,
            rpc_url: str,
            chain_id: int,
            contract_address: str,
            private_key: str,
            confirmations: int = 1,
            receipt_timeout: int = 120,
            w3: Optional[AsyncWeb3] = None,
        ):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.confirmations = confirmations
        self.receipt_timeout = receipt_timeout
        self._w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._account = Account.from_key(private_key)
        self.contract_address = AsyncWeb3.to_checksum_address(contract_address)
        self._contract = self._w3.eth.contract(address=self.contract_address, abi=REQUEST_MANAGER_ABI)

    @property
    def attestor_address(self) -> str:
        return self._account.address

    async def connect(self) -> None:
        try:
            connected = await self._w3.is_connected()
            remote_chain_id = await self._w3.eth.chain_id if connected else None
        except RPC_ERRORS as e:
            raise TransientNetworkException(self.rpc_url, str(e))

        if not connected:
            raise TransientNetworkException(self.rpc_url, "RPC endpoint is not reachable")
        if remote_chain_id != self.chain_id:
            logger.warning(
                f"FlareRequestManagerClient.connect: Configured chain id {self.chain_id} "
                f"but {self.rpc_url} reports {remote_chain_id}"
            )

        logger.info(f"FlareRequestManagerClient.connect: Connected to chain {self.chain_id} via {self.rpc_url}")
        logger.info(f"FlareRequestManagerClient.connect: Request manager {self.contract_address}")
        logger.info(f"FlareRequestManagerClient.connect: Attestor address {self.attestor_address}")

    async def close(self) -> None:
        await self._w3.provider.disconnect()

    async def get_total_request_count(self) -> int:
        try:
            return int(await self._contract.functions.getTotalRequests().call())
        except RPC_ERRORS as e:
            raise TransientNetworkException(self.rpc_url, str(e))

    async def get_request(self, request_id: int) -> PaymentRequest:
        try:
            values = await self._contract.functions.getRequest(request_id).call()
        except ContractLogicError:
            raise RequestNotFoundException(request_id)
        except RPC_ERRORS as e:
            raise TransientNetworkException(self.rpc_url, str(e))
        return request_from_contract_tuple(values)

    async def calculate_xrp_amount(self, asset_symbol: str, asset_amount: int) -> int:
        try:
            return int(await self._contract.functions.calculateXRPAmount(asset_symbol, asset_amount).call())
        except RPC_ERRORS as e:
            raise TransientNetworkException(self.rpc_url, str(e))

    async def submit_attestation(self, request_id: int, tx_hash: str, amount: int, timestamp: int) -> Any:
        try:
            function = self._contract.functions.submitPaymentAttestation(
                request_id,
                xrpl_hash_to_bytes32(tx_hash),
                amount,
                timestamp,
            )
            nonce = await self._w3.eth.get_transaction_count(self.attestor_address, 'pending')
            transaction = await function.build_transaction({
                'from': self.attestor_address,
                'nonce': nonce,
                'chainId': self.chain_id,
            })
            signed = self._account.sign_transaction(transaction)
            sent_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
            logger.debug(
                f"FlareRequestManagerClient.submit_attestation: Sent attestation for request {request_id} "
                f"in {sent_hash.hex()}, waiting for receipt"
            )
            receipt = await self._w3.eth.wait_for_transaction_receipt(sent_hash, timeout=self.receipt_timeout)
        except ContractLogicError as e:
            raise SubmissionFailedException(request_id, f"contract reverted: {e}")
        except TimeExhausted:
            raise SubmissionFailedException(request_id, f"no receipt after {self.receipt_timeout}s")
        except RPC_ERRORS + (ValueError,) as e:
            # Malformed hashes, insufficient funds and nonce errors
            raise SubmissionFailedException(request_id, str(e))

        if receipt['status'] != 1:
            raise SubmissionFailedException(request_id, f"transaction {sent_hash.hex()} reverted")

        await self._wait_for_confirmations(request_id, receipt['blockNumber'])
        return receipt

    async def _wait_for_confirmations(self, request_id: int, block_number: int) -> None:
        # The inclusion block counts as the first confirmation
        target = block_number + self.confirmations - 1
        try:
            while await self._w3.eth.block_number < target:
                await asyncio.sleep(CONFIRMATION_POLL_INTERVAL)
        except RPC_ERRORS as e:
            raise SubmissionFailedException(request_id, f"lost RPC while waiting for confirmations: {e}")
