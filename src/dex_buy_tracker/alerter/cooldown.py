"""Per (group, pool) alert cooldowns."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_SECONDS = 24 * 3600.0


class CooldownTracker:
    """Remembers when each (group, pool) pair last admitted an alert.

    The timestamp is taken at admission, not at successful delivery, so a
    burst of buys produces one alert even if the send later fails.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._last_sent: dict[tuple[int, str], float] = {}

    def __len__(self) -> int:
        return len(self._last_sent)

    def try_acquire(
        self,
        group_id: int,
        pool_address: str,
        cooldown_seconds: float,
        now: float | None = None,
    ) -> bool:
        """Return True and stamp the pair if its cooldown has elapsed."""
        now = self._clock() if now is None else now
        key = (group_id, pool_address.lower())
        last = self._last_sent.get(key)
        if last is not None and now - last < cooldown_seconds:
            return False
        self._last_sent[key] = now
        return True

    def prune(self, max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        expired = [k for k, ts in self._last_sent.items() if now - ts > max_age_seconds]
        for key in expired:
            del self._last_sent[key]
        if expired:
            logger.debug("Purged %d cooldown entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        self._last_sent.clear()
