"""HTTP health endpoint for container and process-manager checks."""

from __future__ import annotations

import logging
from collections.abc import Callable

from aiohttp import web

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"


class HealthServer:
    """Serves `GET /health`: 200 "ok" while healthy, 503 otherwise.

    Example:
        ```python
        server = HealthServer(lambda: tracker.is_running, port=3000)
        await server.start()
        ...
        await server.stop()
        ```
    """

    def __init__(self, is_healthy: Callable[[], bool], *, port: int, host: str = DEFAULT_HOST) -> None:
        self._is_healthy = is_healthy
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self.health_handler)
        return app

    async def health_handler(self, request: web.Request) -> web.Response:
        if self._is_healthy():
            return web.Response(text="ok")
        return web.Response(text="unavailable", status=503)

    async def start(self) -> None:
        if self._runner is not None:
            return
        runner = web.AppRunner(self.create_app())
        await runner.setup()
        try:
            site = web.TCPSite(runner, host=self._host, port=self._port)
            await site.start()
        except Exception:
            await runner.cleanup()
            raise
        self._runner = runner
        logger.info("Health check listening on :%d/health", self._port)

    async def stop(self) -> None:
        if self._runner is None:
            return
        runner, self._runner = self._runner, None
        await runner.cleanup()
