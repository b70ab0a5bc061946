from __future__ import annotations

import logging

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from billbus.persistence.db import ping


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


class HealthResponse(BaseModel):
    status: str
    database: str


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    try:
        await ping()
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("health_database_unavailable", exc_info=exc)
        return HealthResponse(status="degraded", database="unavailable")
    return HealthResponse(status="ok", database="ok")
