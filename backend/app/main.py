from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from starlette.middleware.sessions import SessionMiddleware
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.api.routes import router
from backend.app.dependencies import (
    get_category_registry,
    get_login_rate_limiter,
    get_settings,
    get_telemetry,
)
from backend.app.logging_config import configure_application_logging
from backend.app.services.housekeeping_service import RateLimitSweeper


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    # Fail at startup, not on the first upload, when categories are misconfigured.
    get_category_registry()
    sweeper: RateLimitSweeper | None = None

    if settings.rate_limit_sweep_enabled:
        sweeper = RateLimitSweeper(
            get_login_rate_limiter(),
            settings.rate_limit_sweep_interval_seconds,
            telemetry=get_telemetry(),
        )
        sweeper.start()

    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.stop()


def create_app() -> FastAPI:
    app = FastAPI(title="Athan Notes API", version="0.1.0", lifespan=app_lifespan)
    settings = get_settings()
    assert settings.session_secret is not None

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        request_attributes = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        }
        telemetry.emit("http.request.start", **request_attributes)
        try:
            with telemetry.span("http.request", **request_attributes) as finish_attributes:
                response = await call_next(request)
                finish_attributes["status_code"] = response.status_code
        finally:
            reset_contextvars(**context_tokens)

        response.headers["X-Request-ID"] = request_id
        return response

    app.middleware("http")(request_context_middleware)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=settings.session_cookie_name,
        max_age=settings.session_max_age_seconds,
        same_site="lax",
        https_only=settings.session_https_only,
    )
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )

    return app
