from loguru import logger

from venmorph.models.models import BASIS_POINTS, MAX_SLIPPAGE_BP, LedgerTransaction, PaymentRequest
from venmorph.protocols.chain_clients import EVMChainClient

XRP_SYMBOL = 'XRP'


def minimum_acceptable_drops(required_drops: int, slippage_bp: int) -> int:
    """Smallest payment accepted for a quote, rounding down like the contract's integer math"""
    slippage_bp = min(max(slippage_bp, 0), MAX_SLIPPAGE_BP)
    return required_drops * (BASIS_POINTS - slippage_bp) // BASIS_POINTS


class TransactionMatcher:
    """Decides whether an XRPL payment settles a cached request.

    The XRP amount a request needs is quoted by the RequestManager contract when the
    payment is evaluated, not when the request was created, so a payment made within the
    request's slippage band still matches after the exchange rate moves.

    Correlation:
    - A payment carrying a destination tag only ever matches the request whose id equals the tag
    - An untagged payment matches on recipient address and amount alone
    In both cases the recipient address, amount band and expiry must hold.
    """

    def __init__(self, price_source: EVMChainClient):
        self._price_source = price_source

    async def required_drops(self, request: PaymentRequest) -> int:
        if request.asset_symbol.upper() == XRP_SYMBOL:
            # XRP requests are already denominated in drops
            return request.asset_amount
        return await self._price_source.calculate_xrp_amount(request.asset_symbol, request.asset_amount)

    def correlates(self, tx: LedgerTransaction, request: PaymentRequest) -> bool:
        """Checks that need no price quote"""
        if not tx.is_successful_xrp_payment:
            return False
        if tx.destination_tag is not None and tx.destination_tag != request.id:
            return False
        if tx.destination != request.recipient_xrpl:
            return False
        if tx.unix_timestamp is not None and request.is_expired(tx.unix_timestamp):
            return False
        return True

    async def match(self, tx: LedgerTransaction, request: PaymentRequest) -> bool:
        if not request.is_pending or not self.correlates(tx, request):
            return False

        required = await self.required_drops(request)
        minimum = minimum_acceptable_drops(required, request.slippage_bp)
        if tx.amount < minimum:
            logger.info(
                f"TransactionMatcher.match: {tx.hash} pays {tx.amount} drops to request {request.id}, "
                f"below the minimum {minimum} (required {required}, slippage {request.slippage_bp}bp)"
            )
            return False
        return True
