from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billbus.domain.models import SourceClaim


async def claim_source(
    session: AsyncSession,
    *,
    account_id: str,
    document_type: str,
    external_source_id: str,
    now: datetime,
    stale_before: datetime,
) -> bool:
    # Returns False when a concurrent or earlier write already holds the claim.
    # Claims left behind by writes that never finished expire at `stale_before`.
    await session.execute(
        delete(SourceClaim).where(
            SourceClaim.account_id == account_id,
            SourceClaim.document_type == document_type,
            SourceClaim.external_source_id == external_source_id,
            SourceClaim.claimed_at < stale_before,
        )
    )
    session.add(
        SourceClaim(
            account_id=account_id,
            document_type=document_type,
            external_source_id=external_source_id,
            claimed_at=now,
        )
    )
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        return False
    return True


async def release_claim(
    session: AsyncSession,
    *,
    account_id: str,
    document_type: str,
    external_source_id: str,
) -> None:
    await session.execute(
        delete(SourceClaim).where(
            SourceClaim.account_id == account_id,
            SourceClaim.document_type == document_type,
            SourceClaim.external_source_id == external_source_id,
        )
    )
    await session.commit()
