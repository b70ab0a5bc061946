from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from billbus.services.telemetry import (
    counters_snapshot,
    external_latency_by_integration,
    request_latency_by_path,
)


router = APIRouter(prefix="/api/ops", tags=["ops"])


@router.get("/metrics")
async def metrics(window_s: int = Query(default=300, ge=1, le=86400)) -> dict[str, Any]:
    # In-process view only; each API and worker process reports its own numbers.
    return {
        "window_s": window_s,
        "counters": counters_snapshot(),
        "requests": request_latency_by_path(window_s),
        "external_calls": external_latency_by_integration(window_s),
    }
