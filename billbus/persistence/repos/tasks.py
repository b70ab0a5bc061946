from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from billbus.domain.models import Task


def _retryable(max_attempts: int):
    # Unresolved and still under the attempt cap; terminal-failed rows fall outside.
    return (Task.done.is_(False), Task.attempt_count < max_attempts)


async def has_open_task(
    session: AsyncSession,
    *,
    account_id: str,
    document_type: str,
    source_record_id: str,
    op_tag: str,
    max_attempts: int,
) -> bool:
    result = await session.execute(
        select(func.count())
        .select_from(Task)
        .where(
            Task.account_id == account_id,
            Task.document_type == document_type,
            Task.source_record_id == source_record_id,
            Task.op_tag == op_tag,
            *_retryable(max_attempts),
        )
    )
    return int(result.scalar() or 0) > 0


async def create_task(
    session: AsyncSession,
    *,
    account_id: str,
    document_type: str,
    source_record_id: str,
    op_tag: str,
    descriptive: dict[str, Any],
) -> Task:
    task = Task(
        guid=uuid4().hex,
        account_id=account_id,
        document_type=document_type,
        source_record_id=source_record_id,
        op_tag=op_tag,
        document_type_name=descriptive.get("document_type_name"),
        document_code=descriptive.get("document_code"),
        define1=descriptive.get("define1"),
        define2=descriptive.get("define2"),
        define3=descriptive.get("define3"),
        define4=descriptive.get("define4"),
        define5=descriptive.get("define5"),
        done=False,
        attempt_count=0,
    )
    session.add(task)
    return task


async def list_pending(session: AsyncSession, *, limit: int, max_attempts: int) -> list[Task]:
    # Oldest first, bounded per pass.
    result = await session.execute(
        select(Task).where(*_retryable(max_attempts)).order_by(Task.id).limit(limit)
    )
    return list(result.scalars().all())


async def record_attempt(
    session: AsyncSession,
    task_id: int,
    *,
    success: bool,
    result_desc: str,
    attempted_at: datetime,
) -> None:
    await session.execute(
        update(Task)
        .where(Task.id == task_id)
        .values(
            done=success,
            result_desc=result_desc,
            attempt_count=Task.attempt_count + 1,
            attempted_at=attempted_at,
        )
    )
