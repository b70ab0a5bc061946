from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billbus.domain.models import AuditLogEntry


async def insert_entry(
    session: AsyncSession,
    *,
    created_at: datetime,
    account_id: str,
    document_type: str,
    operator: str | None,
    operation: str,
    success: bool,
    result_desc: str | None,
    new_id: str | None,
    new_code: str | None,
    external_source_id: str | None,
    payload: str | None,
) -> AuditLogEntry:
    entry = AuditLogEntry(
        id=uuid4().hex,
        created_at=created_at,
        account_id=account_id,
        document_type=document_type,
        operator=operator,
        operation=operation,
        success=success,
        result_desc=result_desc,
        new_id=new_id or None,
        new_code=new_code or None,
        external_source_id=external_source_id or None,
        payload=payload,
    )
    session.add(entry)
    return entry


async def find_successful_entry(
    session: AsyncSession,
    *,
    account_id: str,
    document_type: str,
    external_source_id: str,
) -> AuditLogEntry | None:
    # Only successful writes suppress a resubmission; failed attempts may be retried.
    result = await session.execute(
        select(AuditLogEntry)
        .where(
            AuditLogEntry.external_source_id == external_source_id,
            AuditLogEntry.account_id == account_id,
            AuditLogEntry.document_type == document_type,
            AuditLogEntry.success.is_(True),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()
