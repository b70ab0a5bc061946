from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billbus.domain.models import TaskWatermark


async def get_or_create(session: AsyncSession, *, account_id: str, document_type: str) -> str:
    # First reference creates an empty watermark row.
    stmt = select(TaskWatermark.max_value).where(
        TaskWatermark.account_id == account_id,
        TaskWatermark.document_type == document_type,
    )
    current = (await session.execute(stmt)).scalar_one_or_none()
    if current is not None:
        return current.strip()
    try:
        async with session.begin_nested():
            session.add(TaskWatermark(account_id=account_id, document_type=document_type, max_value=""))
    except IntegrityError:
        # Another writer created it first; read theirs.
        current = (await session.execute(stmt)).scalar_one_or_none()
        return (current or "").strip()
    return ""


async def advance(session: AsyncSession, *, account_id: str, document_type: str, value: str) -> None:
    await session.execute(
        update(TaskWatermark)
        .where(
            TaskWatermark.account_id == account_id,
            TaskWatermark.document_type == document_type,
        )
        .values(max_value=value)
    )
