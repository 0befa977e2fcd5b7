"""Health check and metrics endpoints for the streamer service."""

import functools
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional
from aiohttp import web, web_request
from aiohttp.web_response import Response

from .metrics import render_latest


logger = logging.getLogger(__name__)

HealthProbe = Callable[[], Awaitable[Dict[str, Any]]]

# stats may hold values json cannot encode natively
_dumps = functools.partial(json.dumps, default=str)


class HealthCheckHandler:
    """Health check HTTP handler."""

    def __init__(self, probe: HealthProbe, service_name: str = "market-streamer"):
        self.probe = probe
        self.service_name = service_name

    async def health(self, request: web_request.Request) -> Response:
        """Full health report; 503 unless healthy."""
        try:
            health_data = await self.probe()
            status = 200 if health_data["status"] == "healthy" else 503
            return web.json_response(health_data, status=status, dumps=_dumps)

        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            return web.json_response(
                {
                    "service": self.service_name,
                    "status": "unhealthy",
                    "error": str(e),
                    "timestamp": _now()
                },
                status=503
            )

    async def ready(self, request: web_request.Request) -> Response:
        """Readiness probe: ready while healthy or degraded (reconnecting)."""
        try:
            health_data = await self.probe()
            is_ready = health_data["status"] in ["healthy", "degraded"]
            return web.json_response(
                {
                    "ready": is_ready,
                    "status": health_data["status"],
                    "timestamp": _now()
                },
                status=200 if is_ready else 503
            )

        except Exception as e:
            logger.error(f"Readiness check failed: {e}", exc_info=True)
            return web.json_response(
                {
                    "ready": False,
                    "error": str(e),
                    "timestamp": _now()
                },
                status=503
            )

    async def live(self, request: web_request.Request) -> Response:
        """Liveness probe."""
        return web.json_response({"alive": True, "timestamp": _now()}, status=200)

    async def metrics(self, request: web_request.Request) -> Response:
        """Prometheus scrape endpoint."""
        body, content_type = render_latest()
        return web.Response(body=body, headers={"Content-Type": content_type})


class HealthCheckServer:
    """HTTP server for health check endpoints."""

    def __init__(self, probe: HealthProbe, host: str = "0.0.0.0", port: int = 8080):
        self.probe = probe
        self.host = host
        self.port = port
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        handler = HealthCheckHandler(self.probe)
        app.router.add_get('/health', handler.health)
        app.router.add_get('/ready', handler.ready)
        app.router.add_get('/live', handler.live)
        app.router.add_get('/metrics', handler.metrics)
        return app

    async def start(self):
        """Start the health check server."""
        logger.info(f"Starting health check server on {self.host}:{self.port}")

        self.app = self.build_app()
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Health check server started on http://{self.host}:{self.port}")

    async def stop(self):
        """Stop the health check server."""
        logger.info("Stopping health check server")

        if self.site:
            await self.site.stop()

        if self.runner:
            await self.runner.cleanup()

        logger.info("Health check server stopped")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
