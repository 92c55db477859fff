"""Alert enrichment: price a classified buy and attach market context.

Every step degrades to a default instead of failing:

1. Pair stats from the market data gateway (primary, then fallback for gaps)
2. Decimals for base and target: provider, stablecoin symbol, on-chain, 18
3. Human-readable amounts
4. USD value: target amount x unit price, else base amount x native price
5. Position increase vs. the buyer's balance one block earlier, only for
   buys of at least `min_position_usd`
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from dex_buy_tracker.detector.models import BuyAlert
from dex_buy_tracker.ingestor.models import ZERO, BuyEvent, TokenInfo
from dex_buy_tracker.profiler.chain import ChainClientError

if TYPE_CHECKING:
    from dex_buy_tracker.ingestor.market_data import MarketDataGateway
    from dex_buy_tracker.profiler.chain import ChainClient

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MIN_POSITION_USD = Decimal("100")
DEFAULT_MAX_POSITION_INCREASE_PCT = 100_000
DEFAULT_DECIMALS = 18
STABLECOIN_DECIMALS = 6
STABLECOIN_SYMBOLS = frozenset({"USDC", "USDT", "DAI", "BUSD"})
DEFAULT_TARGET_SYMBOL = "TOKEN"


def to_units(raw_amount: int, decimals: int) -> Decimal:
    return Decimal(raw_amount).scaleb(-decimals)


def position_increase_pct(amount_out: int, previous_balance: int, *, max_pct: int) -> int | None:
    """Percent this buy adds to a previous balance, rounded half up.

    Computed in tenths of a percent with integer math. Ratios above
    `max_pct` are treated as unreliable (dust balances) and return None.
    """
    if previous_balance <= 0 or amount_out <= 0:
        return None
    increase_times10 = (amount_out * 1000) // previous_balance
    if increase_times10 > max_pct * 10:
        return None
    if increase_times10 <= 0:
        return None
    return (increase_times10 + 5) // 10


class AlertEnricher:
    """Turns a classified, attributed buy into a `BuyAlert`.

    Example:
        ```python
        enricher = AlertEnricher(gateway, chain_client)
        alert = await enricher.enrich("bsc", buy_event, buyer="0x...")
        print(alert.usd_value, alert.position_increase_pct)
        ```
    """

    def __init__(
        self,
        gateway: MarketDataGateway,
        chain_client: ChainClient,
        *,
        min_position_usd: Decimal = DEFAULT_MIN_POSITION_USD,
        max_position_increase_pct: int = DEFAULT_MAX_POSITION_INCREASE_PCT,
    ) -> None:
        self._gateway = gateway
        self._chain_client = chain_client
        self._min_position_usd = min_position_usd
        self._max_position_increase_pct = max_position_increase_pct

    async def enrich(self, chain: str, buy: BuyEvent, buyer: str) -> BuyAlert:
        stats = await self._gateway.get_pair_stats(chain, buy.pool_address)

        target_info = stats.token(buy.target_token) if stats else None
        base_info = stats.token(buy.base_token) if stats else None
        target_symbol = (target_info.symbol if target_info else "") or DEFAULT_TARGET_SYMBOL
        base_symbol = base_info.symbol if base_info else ""

        base_decimals = await self.resolve_decimals(chain, buy.base_token, base_info)
        target_decimals = await self.resolve_decimals(chain, buy.target_token, target_info)

        target_amount = to_units(buy.target_amount_out, target_decimals)
        base_amount = to_units(buy.base_amount_in, base_decimals)

        price_usd = stats.unit_price_usd(buy.target_token) if stats else ZERO
        usd_value = await self._usd_value(chain, price_usd, target_amount, base_amount)

        position = None
        if usd_value >= self._min_position_usd:
            position = await self._position_increase(chain, buy, buyer)

        return BuyAlert(
            chain=chain,
            pool_address=buy.pool_address,
            target_token=buy.target_token,
            base_token=buy.base_token,
            buyer=buyer,
            tx_hash=buy.tx_hash,
            block_number=buy.block_number,
            usd_value=usd_value,
            base_amount=base_amount,
            base_symbol=base_symbol,
            target_amount=target_amount,
            target_symbol=target_symbol,
            price_usd=price_usd,
            market_cap_usd=stats.fdv_usd if stats else ZERO,
            volume_24h_usd=stats.volume_24h_usd if stats else ZERO,
            liquidity_usd=stats.liquidity_usd if stats else ZERO,
            position_increase_pct=position,
        )

    async def resolve_decimals(self, chain: str, token_address: str, info: TokenInfo | None) -> int:
        if info is not None and info.decimals is not None:
            return info.decimals
        if info is not None and info.symbol.upper() in STABLECOIN_SYMBOLS:
            return STABLECOIN_DECIMALS
        try:
            on_chain = await self._chain_client.get_decimals(chain, token_address)
        except ChainClientError as e:
            logger.warning("Decimals fetch failed for %s on %s, using %d: %s", token_address, chain, DEFAULT_DECIMALS, e)
            return DEFAULT_DECIMALS
        return on_chain if on_chain is not None else DEFAULT_DECIMALS

    async def _usd_value(
        self,
        chain: str,
        price_usd: Decimal,
        target_amount: Decimal,
        base_amount: Decimal,
    ) -> Decimal:
        if price_usd > 0 and target_amount > 0:
            return target_amount * price_usd
        native_price = await self._gateway.get_native_asset_price(chain)
        return base_amount * native_price

    async def _position_increase(self, chain: str, buy: BuyEvent, buyer: str) -> int | None:
        try:
            previous = await self._chain_client.get_balance_of(
                chain,
                buy.target_token,
                buyer,
                block=max(buy.block_number - 1, 0),
            )
        except ChainClientError as e:
            logger.debug("Prior balance lookup failed for %s on %s: %s", buyer, chain, e)
            return None
        return position_increase_pct(
            buy.target_amount_out,
            previous,
            max_pct=self._max_position_increase_pct,
        )


__all__ = ["AlertEnricher", "position_increase_pct", "to_units"]
