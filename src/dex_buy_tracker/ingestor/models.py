"""Data models for the ingestor module."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

ZERO = Decimal("0")


def _to_decimal(value: Any) -> Decimal:
    """Parse a provider number (str/int/float/None) into a Decimal, 0 on junk."""
    if value is None or value == "":
        return ZERO
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO
    if not parsed.is_finite():
        return ZERO
    return parsed


def _to_decimals(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    with contextlib.suppress(TypeError, ValueError):
        n = int(value)
        if 0 <= n <= 36:
            return n
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _gecko_token_address(relationship: Any) -> str:
    """GeckoTerminal token ids look like `bsc_0xabc...`."""
    if not isinstance(relationship, dict):
        return ""
    token_id = str(_as_dict(relationship.get("data")).get("id") or "")
    _, _, address = token_id.rpartition("_")
    return address.lower() if address.startswith("0x") else ""


class PoolVersion(str, Enum):
    """Swap event shapes a pool subscription listens for."""

    V2 = "v2"
    V3 = "v3"
    V4 = "v4"


@dataclass(frozen=True)
class ReserveSwap:
    """Two-reserve swap event (Uniswap V2 style in/out amounts per slot)."""

    pool_address: str
    amount0_in: int
    amount1_in: int
    amount0_out: int
    amount1_out: int
    recipient: str
    tx_hash: str
    block_number: int
    log_index: int = 0


@dataclass(frozen=True)
class DeltaSwap:
    """Signed-delta swap event (concentrated-liquidity style).

    Deltas are from the pool's perspective: positive means the pool
    received the token, negative means the pool paid it out.
    """

    pool_address: str
    amount0: int
    amount1: int
    recipient: str
    tx_hash: str
    block_number: int
    version: PoolVersion = PoolVersion.V3
    log_index: int = 0


SwapEvent = ReserveSwap | DeltaSwap


@dataclass(frozen=True)
class LaunchpadBuy:
    """Bonding-curve purchase reported by a launchpad router, in raw units."""

    router_address: str
    recipient: str
    token: str
    amount_in: int
    amount_out: int
    tx_hash: str
    block_number: int
    log_index: int = 0


@dataclass(frozen=True)
class PoolTokens:
    """Token framing for one pool: on-chain token order plus the tracked side."""

    token0: str
    token1: str
    target_token: str

    def __post_init__(self) -> None:
        token0 = self.token0.lower()
        token1 = self.token1.lower()
        target = self.target_token.lower()
        if token0 == token1:
            raise ValueError(f"Pool tokens must differ, got {token0} twice")
        if target not in (token0, token1):
            raise ValueError(f"Target token {target} is neither token0 nor token1")
        object.__setattr__(self, "token0", token0)
        object.__setattr__(self, "token1", token1)
        object.__setattr__(self, "target_token", target)

    @property
    def target_is_token0(self) -> bool:
        return self.target_token == self.token0

    @property
    def base_token(self) -> str:
        """The counter-asset of the target token in this pool."""
        return self.token1 if self.target_is_token0 else self.token0


@dataclass(frozen=True)
class BuyEvent:
    """Canonical buy extracted from any swap shape, in raw token units."""

    pool_address: str
    base_token: str
    target_token: str
    base_amount_in: int
    target_amount_out: int
    recipient: str
    tx_hash: str
    block_number: int


@dataclass(frozen=True)
class TokenInfo:
    """Token metadata as reported by a market-data provider."""

    address: str
    symbol: str = ""
    name: str = ""
    decimals: int | None = None

    @classmethod
    def from_dict(cls, data: Any) -> TokenInfo:
        data = _as_dict(data)
        return cls(
            address=str(data.get("address") or "").lower(),
            symbol=str(data.get("symbol") or ""),
            name=str(data.get("name") or ""),
            decimals=_to_decimals(data.get("decimals")),
        )


@dataclass(frozen=True)
class PairStats:
    """Provider-agnostic market stats for one pool.

    `price_usd` is the USD price of the pool's base token and
    `quote_price_usd` the USD price of its quote token (0 when unknown).
    """

    pair_address: str
    base_token: TokenInfo
    quote_token: TokenInfo
    price_usd: Decimal = ZERO
    quote_price_usd: Decimal = ZERO
    fdv_usd: Decimal = ZERO
    liquidity_usd: Decimal = ZERO
    volume_24h_usd: Decimal = ZERO
    source: str = ""

    @classmethod
    def from_dexscreener(cls, data: dict[str, Any]) -> PairStats:
        """Create PairStats from a DexScreener pair object."""
        price_usd = _to_decimal(data.get("priceUsd"))
        price_native = _to_decimal(data.get("priceNative"))
        # priceNative is the base price in quote units.
        quote_price = price_usd / price_native if price_usd > 0 and price_native > 0 else ZERO
        liquidity = _as_dict(data.get("liquidity"))
        volume = _as_dict(data.get("volume"))
        return cls(
            pair_address=str(data.get("pairAddress") or "").lower(),
            base_token=TokenInfo.from_dict(data.get("baseToken")),
            quote_token=TokenInfo.from_dict(data.get("quoteToken")),
            price_usd=price_usd,
            quote_price_usd=quote_price,
            fdv_usd=_to_decimal(data.get("fdv") or data.get("marketCap")),
            liquidity_usd=_to_decimal(liquidity.get("usd")),
            volume_24h_usd=_to_decimal(volume.get("h24")),
            source="dexscreener",
        )

    @classmethod
    def from_geckoterminal(cls, data: dict[str, Any]) -> PairStats:
        """Create PairStats from a GeckoTerminal pool resource."""
        attrs = _as_dict(data.get("attributes"))
        volume = _as_dict(attrs.get("volume_usd"))
        relationships = _as_dict(data.get("relationships"))
        return cls(
            pair_address=str(attrs.get("address") or "").lower(),
            base_token=TokenInfo(address=_gecko_token_address(relationships.get("base_token"))),
            quote_token=TokenInfo(address=_gecko_token_address(relationships.get("quote_token"))),
            price_usd=_to_decimal(attrs.get("base_token_price_usd")),
            quote_price_usd=_to_decimal(attrs.get("quote_token_price_usd")),
            fdv_usd=_to_decimal(attrs.get("fdv_usd") or attrs.get("market_cap_usd")),
            liquidity_usd=_to_decimal(attrs.get("reserve_in_usd")),
            volume_24h_usd=_to_decimal(volume.get("h24")),
            source="geckoterminal",
        )

    @property
    def has_market_data(self) -> bool:
        """False when liquidity, valuation and volume are all zero."""
        return self.liquidity_usd > 0 or self.fdv_usd > 0 or self.volume_24h_usd > 0

    def token(self, address: str) -> TokenInfo | None:
        address = address.lower()
        if self.base_token.address and self.base_token.address == address:
            return self.base_token
        if self.quote_token.address and self.quote_token.address == address:
            return self.quote_token
        return None

    def unit_price_usd(self, token_address: str) -> Decimal:
        """USD price of one whole unit of the given pool token, 0 if unknown."""
        address = token_address.lower()
        if self.base_token.address == address:
            return self.price_usd
        if self.quote_token.address == address:
            return self.quote_price_usd
        return ZERO

    def merge_missing(self, other: PairStats) -> PairStats:
        """Fill zero-valued numeric fields from another provider's stats."""
        return replace(
            self,
            price_usd=self.price_usd if self.price_usd > 0 else other.price_usd,
            quote_price_usd=self.quote_price_usd if self.quote_price_usd > 0 else other.quote_price_usd,
            fdv_usd=self.fdv_usd if self.fdv_usd > 0 else other.fdv_usd,
            liquidity_usd=self.liquidity_usd if self.liquidity_usd > 0 else other.liquidity_usd,
            volume_24h_usd=self.volume_24h_usd if self.volume_24h_usd > 0 else other.volume_24h_usd,
        )


@dataclass(frozen=True)
class PoolCandidate:
    """A pool returned by token -> pools discovery."""

    address: str
    liquidity_usd: Decimal


@dataclass(frozen=True)
class NewPool:
    """A recently created pool surfaced by the new-pool scanner."""

    chain: str
    address: str
    name: str
    liquidity_usd: Decimal
    created_at: datetime | None
    source: str

    def age_seconds(self, now: datetime | None = None) -> float | None:
        if self.created_at is None:
            return None
        now = now or datetime.now(UTC)
        return (now - self.created_at).total_seconds()

    @classmethod
    def from_dexscreener(cls, chain: str, data: dict[str, Any]) -> NewPool:
        created_at = None
        created_ms = data.get("pairCreatedAt")
        if created_ms:
            with contextlib.suppress(TypeError, ValueError, OverflowError):
                created_at = datetime.fromtimestamp(int(created_ms) / 1000, tz=UTC)
        base = _as_dict(data.get("baseToken")).get("symbol") or "?"
        quote = _as_dict(data.get("quoteToken")).get("symbol") or "?"
        liquidity = _as_dict(data.get("liquidity"))
        return cls(
            chain=chain,
            address=str(data.get("pairAddress") or "").lower(),
            name=f"{base}/{quote}",
            liquidity_usd=_to_decimal(liquidity.get("usd")),
            created_at=created_at,
            source="dexscreener",
        )

    @classmethod
    def from_geckoterminal(cls, chain: str, data: dict[str, Any]) -> NewPool:
        attrs = _as_dict(data.get("attributes"))
        created_at = None
        created_raw = attrs.get("pool_created_at")
        if created_raw:
            with contextlib.suppress(ValueError, AttributeError):
                created_at = datetime.fromisoformat(str(created_raw).replace("Z", "+00:00"))
        return cls(
            chain=chain,
            address=str(attrs.get("address") or "").lower(),
            name=str(attrs.get("name") or f"{attrs.get('base_token_symbol') or '?'}/{attrs.get('quote_token_symbol') or '?'}"),
            liquidity_usd=_to_decimal(attrs.get("reserve_in_usd")),
            created_at=created_at,
            source="geckoterminal",
        )
