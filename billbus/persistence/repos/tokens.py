from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from billbus.domain.models import ApiToken


async def create_token(session: AsyncSession, *, token_id: str, user_id: str, now: datetime) -> ApiToken:
    row = ApiToken(id=token_id, user_id=user_id, issued_at=now, last_active_at=now)
    session.add(row)
    return row


async def purge_idle(session: AsyncSession, *, cutoff: datetime) -> int:
    # Tokens idle at or beyond the cutoff are gone for good.
    result = await session.execute(delete(ApiToken).where(ApiToken.last_active_at <= cutoff))
    return int(result.rowcount or 0)


async def token_exists(session: AsyncSession, token_id: str) -> bool:
    result = await session.execute(select(func.count()).select_from(ApiToken).where(ApiToken.id == token_id))
    return int(result.scalar() or 0) > 0


async def touch_token(session: AsyncSession, token_id: str, *, now: datetime) -> None:
    await session.execute(update(ApiToken).where(ApiToken.id == token_id).values(last_active_at=now))
