"""Alerting layer - dispatch queue, cooldowns, formatting and delivery."""
