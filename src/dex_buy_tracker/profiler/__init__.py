"""Profiler layer - on-chain reads and buyer attribution."""
