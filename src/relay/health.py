"""Health check and metrics endpoints for the relay.

Provides HTTP endpoints for load balancers, monitoring systems and
orchestration tools (e.g., Docker healthcheck, Kubernetes liveness probe).
"""

import logging
import time
from typing import Any

from aiohttp import web

from relay.connection import ConnectionRegistry
from relay.metrics import get_metrics_collector
from relay.store import SessionStore
from relay.transport.base import Transport

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check handler for the relay.

    Provides /health (transport running, occupancy), /liveness, and the
    /metrics and /metrics/summary endpoints.
    """

    def __init__(
        self,
        store: SessionStore | None = None,
        connections: ConnectionRegistry | None = None,
        transport: Transport | None = None,
    ) -> None:
        """Initialize health check handler.

        Args:
            store: Session store (optional)
            connections: Connection registry (optional)
            transport: Client transport whose running state gates health (optional)
        """
        self.store = store
        self.connections = connections
        self.transport = transport
        self.start_time = time.time()

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Returns:
            200 OK: Service is healthy
            503 Service Unavailable: Transport is not running

        Response format:
        {
            "status": "healthy" | "unhealthy",
            "uptime_seconds": float,
            "transport": {"type": str | null, "running": bool},
            "sessions": int,
            "connections": int
        }
        """
        transport_running = self.transport.is_running if self.transport is not None else True
        status_code = 200 if transport_running else 503

        response_data: dict[str, Any] = {
            "status": "healthy" if transport_running else "unhealthy",
            "uptime_seconds": time.time() - self.start_time,
            "transport": {
                "type": self.transport.transport_type if self.transport is not None else None,
                "running": transport_running,
            },
            "sessions": len(self.store) if self.store is not None else 0,
            "connections": len(self.connections) if self.connections is not None else 0,
        }

        logger.debug("Health check performed", extra={"status": response_data["status"]})

        return web.json_response(response_data, status=status_code)

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint.

        Returns OK while the process is running, even if the transport is down.
        """
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": time.time() - self.start_time,
            },
            status=200,
        )

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint.

        Returns:
            200 OK: Metrics in Prometheus text format
            Content-Type: text/plain; version=0.0.4
        """
        try:
            metrics_text = get_metrics_collector().export_prometheus()

            return web.Response(
                text=metrics_text,
                content_type="text/plain; version=0.0.4",
                status=200,
            )

        except Exception as e:
            logger.error("Failed to export metrics", extra={"error": str(e)}, exc_info=True)
            return web.Response(
                text=f"# Error exporting metrics: {e}\n",
                content_type="text/plain",
                status=500,
            )

    async def metrics_summary(self, request: web.Request) -> web.Response:
        """Human-readable metrics summary endpoint.

        Returns:
            200 OK: Metrics summary in JSON format
        """
        summary = get_metrics_collector().get_summary()

        return web.json_response(
            {
                "status": "ok",
                "uptime_seconds": time.time() - self.start_time,
                "metrics": summary,
            },
            status=200,
        )


def setup_health_routes(
    app: web.Application,
    store: SessionStore | None = None,
    connections: ConnectionRegistry | None = None,
    transport: Transport | None = None,
) -> None:
    """Set up health check routes on application.

    Args:
        app: aiohttp Application instance
        store: Session store (optional)
        connections: Connection registry (optional)
        transport: Client transport (optional)
    """
    handler = HealthCheckHandler(store=store, connections=connections, transport=transport)

    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/liveness", handler.liveness_check)
    app.router.add_get("/metrics", handler.metrics_endpoint)
    app.router.add_get("/metrics/summary", handler.metrics_summary)

    logger.info(
        "Health check endpoints configured: /health, /liveness, /metrics, /metrics/summary"
    )
