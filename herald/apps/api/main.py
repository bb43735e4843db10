from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request

from herald.apps.api.errors import install_error_handlers
from herald.apps.api.response import API_VERSION, REQUEST_ID_HEADER, request_id_for
from herald.apps.api.routes.notifications import router as notifications_router
from herald.core.config import get_settings
from herald.core.logging import configure_logging
from herald.persistence.db import create_tables, get_engine
from herald.services.notifications.factory import NotificationServices, build_services


logger = logging.getLogger(__name__)


def create_app(services: NotificationServices | None = None) -> FastAPI:
    # Injected services (tests, embedders) skip the production wiring in the lifespan.
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "notification_services", None) is None:
            settings = get_settings()
            if settings.queue_store_backend == "sql":
                await create_tables(get_engine())
            app.state.notification_services = await build_services(settings)
        yield

    app = FastAPI(title="Herald Notification Queue API", lifespan=lifespan)
    app.state.notification_services = services

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = request_id_for(request)
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "api_request method=%s path=%s status=%s latency_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        return response

    app.include_router(notifications_router, prefix=f"/{API_VERSION}")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    install_error_handlers(app)
    return app
