"""Health check and metrics endpoints for the notifier service."""

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from aiohttp import web, web_request
from aiohttp.web_response import Response
from prometheus_client import CONTENT_TYPE_LATEST

if TYPE_CHECKING:
    from .main import NotifierService

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check HTTP handler."""

    def __init__(self, service: "NotifierService"):
        self.service = service

    async def health(self, request: web_request.Request) -> Response:
        """Per-account connection status."""
        try:
            health_data = self.service.health_check()
            status = 200 if health_data["status"] == "healthy" else 503
            return web.json_response(health_data, status=status)

        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            return web.json_response(
                {
                    "service": "bybit-notifier",
                    "status": "unhealthy",
                    "error": str(e),
                    "timestamp": datetime.now(timezone.utc).isoformat()
                },
                status=503
            )

    async def live(self, request: web_request.Request) -> Response:
        """Liveness probe."""
        return web.json_response(
            {
                "alive": True,
                "timestamp": datetime.now(timezone.utc).isoformat()
            },
            status=200
        )

    async def metrics(self, request: web_request.Request) -> Response:
        """Prometheus exposition."""
        body = self.service.metrics.render()
        return web.Response(body=body, headers={"Content-Type": CONTENT_TYPE_LATEST})


def create_app(service: "NotifierService") -> web.Application:
    app = web.Application()
    handler = HealthCheckHandler(service)
    app.router.add_get('/health', handler.health)
    app.router.add_get('/live', handler.live)
    app.router.add_get('/metrics', handler.metrics)
    return app


class HealthCheckServer:
    """HTTP server for health check endpoints."""

    def __init__(self, service: "NotifierService", host: str = "0.0.0.0", port: int = 8080):
        self.service = service
        self.host = host
        self.port = port
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    async def start(self):
        logger.info(f"Starting health check server on {self.host}:{self.port}")

        self.runner = web.AppRunner(create_app(self.service))
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Health check server started on http://{self.host}:{self.port}")

    async def stop(self):
        logger.info("Stopping health check server")

        if self.site:
            await self.site.stop()

        if self.runner:
            await self.runner.cleanup()

        logger.info("Health check server stopped")
