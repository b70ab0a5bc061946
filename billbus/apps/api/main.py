from __future__ import annotations

from contextlib import asynccontextmanager
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from billbus.apps.api.errors import (
    billbus_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from billbus.apps.api.routes.data import router as data_router
from billbus.apps.api.routes.health import router as health_router
from billbus.apps.api.routes.ops import router as ops_router
from billbus.core.config import get_settings
from billbus.core.errors import BillBusError
from billbus.core.logging import configure_logging
from billbus.services.runtime import Runtime
from billbus.services.telemetry import record_request


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    built: Runtime | None = getattr(app.state, "runtime", None)
    if built is not None:
        await built.aclose()


def create_app(runtime: Runtime | None = None) -> FastAPI:
    configure_logging()
    app = FastAPI(title=get_settings().app_name, lifespan=_lifespan)
    # None means deps.get_runtime builds one on the first request.
    app.state.runtime = runtime

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(BillBusError)
    async def _billbus_exception_handler(request: Request, exc: BillBusError):
        return await billbus_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(data_router)
    app.include_router(health_router)
    app.include_router(ops_router)
    return app


app = create_app()
