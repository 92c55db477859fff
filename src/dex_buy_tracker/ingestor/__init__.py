"""Ingestion layer - chain transports, event decoding and market data."""
