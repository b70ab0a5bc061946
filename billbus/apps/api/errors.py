from __future__ import annotations

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from billbus.core.errors import BillBusError
from billbus.domain.envelope import BillResult


logger = logging.getLogger(__name__)


def envelope_response(result: BillResult, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=result.to_wire(), status_code=status_code)


async def billbus_exception_handler(request: Request, exc: BillBusError) -> JSONResponse:
    # Domain failures are ordinary NG results, not transport errors.
    return envelope_response(BillResult.failure(str(exc), code=exc.code))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', '')}" for error in exc.errors()
    )
    return envelope_response(BillResult.failure(f"invalid request: {details}"), status_code=422)


async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return envelope_response(BillResult.failure(str(exc.detail)), status_code=exc.status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; the log carries the detail.
    logger.error(
        "unhandled_exception path=%s request_id=%s",
        request.url.path,
        getattr(request.state, "request_id", None),
        exc_info=exc,
    )
    return envelope_response(BillResult.failure("internal server error"), status_code=500)
