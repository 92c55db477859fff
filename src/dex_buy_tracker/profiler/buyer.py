"""Buyer attribution for swap recipients.

A swap's nominal recipient is often a router or aggregator contract. The
resolver only ever returns an externally owned account; anything ambiguous
is skipped (None) rather than misattributed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from web3 import Web3

from dex_buy_tracker.profiler.chain import ChainClient, ChainClientError

logger = logging.getLogger(__name__)


@dataclass
class ResolverStats:
    direct: int = 0
    via_sender: int = 0
    skipped: int = 0


class BuyerResolver:
    """Maps a swap recipient to the end-user wallet, or None to skip.

    Policy:
        - recipient has no code: it is the buyer
        - recipient is a contract on an aggregator-heavy chain: the
          transaction sender is the buyer if it has no code, else skip
        - recipient is a contract anywhere else: skip
    """

    def __init__(self, chain_client: ChainClient, *, aggregator_heavy_chains: Iterable[str] = ()) -> None:
        self._chain_client = chain_client
        self._aggregator_heavy = frozenset(c.lower() for c in aggregator_heavy_chains)
        self.stats = ResolverStats()

    async def resolve(self, chain: str, recipient: str, tx_hash: str) -> str | None:
        try:
            buyer = Web3.to_checksum_address(recipient)
        except (TypeError, ValueError):
            logger.debug("Invalid recipient address %r on %s", recipient, chain)
            self.stats.skipped += 1
            return None

        if not await self._chain_client.is_contract(chain, buyer):
            self.stats.direct += 1
            return buyer

        if chain not in self._aggregator_heavy:
            logger.debug("Contract buyer skipped: %s on %s", buyer, chain)
            self.stats.skipped += 1
            return None

        try:
            tx = await self._chain_client.get_transaction(chain, tx_hash)
        except ChainClientError as e:
            logger.warning("getTransaction failed for %s on %s, skipping contract buyer %s: %s", tx_hash, chain, buyer, e)
            self.stats.skipped += 1
            return None

        sender = (tx or {}).get("from")
        if not sender:
            logger.info("Contract buyer skipped (%s, tx sender missing): %s", chain, buyer)
            self.stats.skipped += 1
            return None

        try:
            sender = Web3.to_checksum_address(sender)
        except (TypeError, ValueError):
            self.stats.skipped += 1
            return None

        if await self._chain_client.is_contract(chain, sender):
            logger.info("Contract buyer skipped (%s, tx sender is also a contract): %s", chain, buyer)
            self.stats.skipped += 1
            return None

        logger.info("Aggregator swap on %s: recipient=%s -> buyer=%s", chain, buyer, sender)
        self.stats.via_sender += 1
        return sender
