"""Tests for the HTTP health endpoint."""

from __future__ import annotations

import pytest
from aiohttp import test_utils

from dex_buy_tracker.health import HealthServer


class TestHealthEndpoint:
    """Tests for GET /health."""

    @pytest.mark.asyncio
    async def test_healthy_returns_ok(self):
        server = HealthServer(lambda: True, port=0)

        async with test_utils.TestClient(test_utils.TestServer(server.create_app())) as client:
            resp = await client.get("/health")

            assert resp.status == 200
            assert await resp.text() == "ok"

    @pytest.mark.asyncio
    async def test_unhealthy_returns_503(self):
        server = HealthServer(lambda: False, port=0)

        async with test_utils.TestClient(test_utils.TestServer(server.create_app())) as client:
            resp = await client.get("/health")

            assert resp.status == 503

    @pytest.mark.asyncio
    async def test_other_paths_are_not_found(self):
        server = HealthServer(lambda: True, port=0)

        async with test_utils.TestClient(test_utils.TestServer(server.create_app())) as client:
            resp = await client.get("/")

            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_state_is_read_per_request(self):
        healthy = {"value": True}
        server = HealthServer(lambda: healthy["value"], port=0)

        async with test_utils.TestClient(test_utils.TestServer(server.create_app())) as client:
            assert (await client.get("/health")).status == 200
            healthy["value"] = False
            assert (await client.get("/health")).status == 503


class TestHealthServerLifecycle:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self):
        server = HealthServer(lambda: True, port=0, host="127.0.0.1")

        await server.start()
        runner = server._runner
        await server.start()
        assert server._runner is runner

        await server.stop()
        await server.stop()
        assert server._runner is None
