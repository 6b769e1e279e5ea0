import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, Request, Response, status

from wschannel.backend import Backend, BackendError, ChannelNotFoundError, get_backend
from wschannel.config import settings
from wschannel.handlers import BaseHandler, HandlerRegistry, Route, WebSocketHandler
from wschannel.logging_utils import RequestLoggingMiddleware, setup_logging
from wschannel.metrics import get_metrics, get_metrics_content_type
from wschannel.responses import write_and_log_backend_error, write_and_log_request_error
from wschannel.schemas import DataResponse, HealthResponse
from wschannel.storage import check_db_health, init_db


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def build_registry(http_client: httpx.Client) -> HandlerRegistry:
    """Construct every channel handler this service runs."""
    registry = HandlerRegistry()
    registry.register(WebSocketHandler(http_client))
    return registry


def _channel_endpoint(handler: BaseHandler, route: Route):
    async def endpoint(
        channel_uuid: str,
        request: Request,
        backend: Backend = Depends(get_backend),
    ) -> Response:
        try:
            channel = backend.get_channel(handler.channel_type, channel_uuid)
        except ChannelNotFoundError as e:
            return write_and_log_request_error(request, None, e)
        except BackendError as e:
            return write_and_log_backend_error(request, None, e)

        logger.debug(f"{handler.name} {route.action} request for channel {channel.uuid}")
        return await route.func(channel, request, backend)

    endpoint.__name__ = f"{handler.route_prefix}_{route.action}"
    return endpoint


def create_app(registry: Optional[HandlerRegistry] = None) -> FastAPI:
    """
    Create the FastAPI app serving the routes of every registered handler.

    Channel routes are mounted at /c/{channel_type}/{channel_uuid}/{action}.
    When no registry is given, the default one is built with a shared HTTP
    client using HTTP_TIMEOUT_SECONDS.
    """
    http_client = None
    if registry is None:
        http_client = httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS)
        registry = build_registry(http_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan context manager for startup and shutdown events.
        - Startup: Initialize database and create tables
        - Shutdown: Close the HTTP client we created
        """
        init_db()
        yield
        if http_client is not None:
            http_client.close()

    app = FastAPI(
        title="WebSocket Channel",
        description="Channel handler bridging a websocket chat provider to the messaging gateway",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.registry = registry

    app.add_middleware(RequestLoggingMiddleware)

    # =========================================================================
    # Health Check Routes
    # =========================================================================

    @app.get("/health/live", response_model=HealthResponse)
    async def health_live() -> HealthResponse:
        """Liveness probe - always returns 200 once the app is running."""
        return HealthResponse(status="ok")

    @app.get("/health/ready", response_model=HealthResponse)
    async def health_ready(response: Response) -> HealthResponse:
        """
        Readiness probe - returns 200 only if the DB is reachable and the
        schema is applied, 503 (Service Unavailable) otherwise.
        """
        if not check_db_health():
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return HealthResponse(
                status="not_ready",
                reason="Database not reachable or schema not applied"
            )

        return HealthResponse(status="ready")

    # =========================================================================
    # Channel Routes
    # =========================================================================

    for handler in registry:
        for route in handler.routes():
            path = f"/c/{handler.route_prefix}/{{channel_uuid}}/{route.action}"
            app.add_api_route(
                path,
                _channel_endpoint(handler, route),
                methods=[route.method],
                responses={
                    200: {"model": DataResponse},
                    400: {"model": DataResponse, "description": "Malformed request"},
                    500: {"model": DataResponse, "description": "Backend failure"},
                },
            )
            logger.debug(f"Mounted {route.method} {path}")

    # =========================================================================
    # Metrics Route
    # =========================================================================

    @app.get("/metrics")
    async def metrics() -> Response:
        """Expose Prometheus-style metrics."""
        return Response(
            content=get_metrics(),
            media_type=get_metrics_content_type()
        )

    return app


app = create_app()
