"""Data models for the detector module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal


@dataclass(frozen=True)
class BuyAlert:
    """Fully priced buy, ready to be filtered and rendered per group.

    Attributes:
        chain: Chain identifier (e.g. "bsc").
        pool_address: Pool the swap happened in (lowercase).
        target_token: Tracked token address (lowercase).
        buyer: Checksummed end-user wallet.
        usd_value: Estimated USD value of the buy.
        base_amount: Human-readable amount of the base token spent.
        target_amount: Human-readable amount of the target token received.
        price_usd: Target token unit price in USD (0 if unknown).
        position_increase_pct: Integer percent increase over the buyer's
            prior balance, or None when unknown or unreliable.
    """

    chain: str
    pool_address: str
    target_token: str
    base_token: str
    buyer: str
    tx_hash: str
    block_number: int
    usd_value: Decimal
    base_amount: Decimal
    base_symbol: str
    target_amount: Decimal
    target_symbol: str
    price_usd: Decimal
    market_cap_usd: Decimal
    volume_24h_usd: Decimal
    liquidity_usd: Decimal
    position_increase_pct: int | None = None
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, object]:
        """Serialize to a flat dictionary for logging."""
        return {
            "chain": self.chain,
            "pool_address": self.pool_address,
            "target_token": self.target_token,
            "buyer": self.buyer,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "usd_value": str(self.usd_value),
            "base_amount": str(self.base_amount),
            "base_symbol": self.base_symbol,
            "target_amount": str(self.target_amount),
            "target_symbol": self.target_symbol,
            "price_usd": str(self.price_usd),
            "market_cap_usd": str(self.market_cap_usd),
            "volume_24h_usd": str(self.volume_24h_usd),
            "liquidity_usd": str(self.liquidity_usd),
            "position_increase_pct": self.position_increase_pct,
            "detected_at": self.detected_at.isoformat(),
        }
