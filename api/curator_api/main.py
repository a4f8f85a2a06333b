from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from curator_api.api.router import api_router
from curator_api.core.config import Settings, get_settings
from curator_api.core.telemetry import configure_logging, setup_api_telemetry, shutdown_api_telemetry
from curator_api.services.repository import get_repository

logger = logging.getLogger(__name__)


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request; moderation writes are logged at INFO, the rest at DEBUG."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started_at = time.perf_counter()
        response = await call_next(request)
        level = logging.INFO if request.method != "GET" or response.status_code >= 400 else logging.DEBUG
        logger.log(
            level,
            "http %s %s status=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started_at) * 1000.0,
        )
        return response


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.repository = get_repository()
        logger.info(
            "curator api up environment=%s storage=%s",
            settings.environment,
            type(app.state.repository).__name__,
        )
        try:
            yield
        finally:
            shutdown_api_telemetry(app, app.state.telemetry)
            await app.state.repository.close()
            get_repository.cache_clear()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.telemetry = setup_api_telemetry(app, settings)
    app.add_middleware(RequestTimingMiddleware)
    app.include_router(api_router)
    return app


app = create_app()
