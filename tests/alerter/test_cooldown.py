"""Tests for per (group, pool) cooldowns."""

from __future__ import annotations

from dex_buy_tracker.alerter.cooldown import CooldownTracker

POOL = "0x2222222222222222222222222222222222222222"


class TestCooldownTracker:
    """Tests for CooldownTracker."""

    def test_second_alert_within_window_is_refused(self) -> None:
        tracker = CooldownTracker()
        assert tracker.try_acquire(-100, POOL, 3.0, now=10.0) is True
        assert tracker.try_acquire(-100, POOL, 3.0, now=12.9) is False
        assert tracker.try_acquire(-100, POOL, 3.0, now=13.0) is True

    def test_refusal_does_not_extend_window(self) -> None:
        tracker = CooldownTracker()
        tracker.try_acquire(-100, POOL, 3.0, now=10.0)
        tracker.try_acquire(-100, POOL, 3.0, now=12.0)
        assert tracker.try_acquire(-100, POOL, 3.0, now=13.5) is True

    def test_keys_are_per_group_and_case_insensitive_pool(self) -> None:
        tracker = CooldownTracker()
        assert tracker.try_acquire(-100, POOL, 60.0, now=0.0) is True
        assert tracker.try_acquire(-200, POOL, 60.0, now=1.0) is True
        assert tracker.try_acquire(-100, POOL.upper().replace("0X", "0x"), 60.0, now=2.0) is False

    def test_zero_cooldown_always_admits(self) -> None:
        tracker = CooldownTracker()
        assert tracker.try_acquire(-100, POOL, 0.0, now=5.0) is True
        assert tracker.try_acquire(-100, POOL, 0.0, now=5.0) is True

    def test_prune_drops_old_entries(self) -> None:
        clock_now = [0.0]
        tracker = CooldownTracker(clock=lambda: clock_now[0])
        tracker.try_acquire(-100, POOL, 3.0)
        clock_now[0] = 50.0
        tracker.try_acquire(-200, POOL, 3.0)

        clock_now[0] = 100.0
        assert tracker.prune(max_age_seconds=60.0) == 1
        assert len(tracker) == 1
