"""Swap classification: which swaps are buys of the tracked token.

All functions here are pure. Sells and degenerate swaps return None.
"""

from __future__ import annotations

from dataclasses import dataclass

from dex_buy_tracker.ingestor.models import BuyEvent, DeltaSwap, PoolTokens, ReserveSwap, SwapEvent


@dataclass(frozen=True)
class SwapAmounts:
    """Per-slot in/out amounts, all non-negative."""

    amount0_in: int
    amount1_in: int
    amount0_out: int
    amount1_out: int


def normalize_delta(amount0: int, amount1: int) -> SwapAmounts:
    """Split signed pool deltas into in/out magnitudes.

    A positive delta means the pool received that token (wallet paid in),
    a negative delta means the pool paid it out.
    """
    return SwapAmounts(
        amount0_in=amount0 if amount0 > 0 else 0,
        amount1_in=amount1 if amount1 > 0 else 0,
        amount0_out=-amount0 if amount0 < 0 else 0,
        amount1_out=-amount1 if amount1 < 0 else 0,
    )


def _to_buy(
    amounts: SwapAmounts,
    tokens: PoolTokens,
    *,
    pool_address: str,
    recipient: str,
    tx_hash: str,
    block_number: int,
) -> BuyEvent | None:
    if tokens.target_is_token0:
        base_in, target_out = amounts.amount1_in, amounts.amount0_out
    else:
        base_in, target_out = amounts.amount0_in, amounts.amount1_out
    if base_in <= 0 or target_out <= 0:
        return None
    return BuyEvent(
        pool_address=pool_address.lower(),
        base_token=tokens.base_token,
        target_token=tokens.target_token,
        base_amount_in=base_in,
        target_amount_out=target_out,
        recipient=recipient,
        tx_hash=tx_hash,
        block_number=block_number,
    )


def classify_reserve_swap(event: ReserveSwap, tokens: PoolTokens) -> BuyEvent | None:
    """Buy if base comes in on the non-target slot and target goes out."""
    amounts = SwapAmounts(
        amount0_in=event.amount0_in,
        amount1_in=event.amount1_in,
        amount0_out=event.amount0_out,
        amount1_out=event.amount1_out,
    )
    return _to_buy(
        amounts,
        tokens,
        pool_address=event.pool_address,
        recipient=event.recipient,
        tx_hash=event.tx_hash,
        block_number=event.block_number,
    )


def classify_delta_swap(event: DeltaSwap, tokens: PoolTokens) -> BuyEvent | None:
    """Buy if the pool paid out the target token (negative delta on its slot)."""
    target_delta = event.amount0 if tokens.target_is_token0 else event.amount1
    if target_delta >= 0:
        return None
    return _to_buy(
        normalize_delta(event.amount0, event.amount1),
        tokens,
        pool_address=event.pool_address,
        recipient=event.recipient,
        tx_hash=event.tx_hash,
        block_number=event.block_number,
    )


def classify_swap(event: SwapEvent, tokens: PoolTokens) -> BuyEvent | None:
    if isinstance(event, ReserveSwap):
        return classify_reserve_swap(event, tokens)
    if isinstance(event, DeltaSwap):
        return classify_delta_swap(event, tokens)
    raise TypeError(f"Unsupported swap event type: {type(event).__name__}")
