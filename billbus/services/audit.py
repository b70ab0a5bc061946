from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
import json
import logging
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billbus.core.config import get_settings
from billbus.core.errors import AuditSinkFailureError
from billbus.persistence.repos import audit as audit_repo
from billbus.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


@dataclass
class AuditRecord:
    account_id: str
    document_type: str
    operation: str
    success: bool
    result_desc: str
    operator: str | None = None
    new_id: str | None = None
    new_code: str | None = None
    external_source_id: str | None = None
    payload: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditLog:
    """Appends one entry per write attempt; a failed insert never reaches the caller."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        fallback_dir: str | Path | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.fallback_dir = Path(fallback_dir or get_settings().audit_fallback_dir)

    async def append(self, record: AuditRecord) -> bool:
        try:
            await self._insert(record)
        except AuditSinkFailureError as exc:
            increment_counter("audit_sink_failures")
            logger.warning(
                "audit_write_failed account_id=%s document_type=%s",
                record.account_id,
                record.document_type,
                exc_info=exc,
            )
            self._write_fallback(record, exc)
            return False
        return True

    async def _insert(self, record: AuditRecord) -> None:
        try:
            async with self._session_factory() as session:
                await audit_repo.insert_entry(session, **asdict(record))
                await session.commit()
        except SQLAlchemyError as exc:
            raise AuditSinkFailureError(str(exc)) from exc

    def _write_fallback(self, record: AuditRecord, error: Exception) -> None:
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        path = self.fallback_dir / f"{record.account_id}_{record.document_type}_Error_{stamp}.txt"
        body = {"error": str(error), "entry": asdict(record)}
        try:
            self.fallback_dir.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(body, default=str, ensure_ascii=False) + "\n")
        except OSError as exc:
            logger.error("audit_fallback_failed path=%s", path, exc_info=exc)

    async def prior_success(
        self, *, account_id: str, document_type: str, external_source_id: str
    ) -> str | None:
        # Description of the earlier successful write, if any.
        async with self._session_factory() as session:
            entry = await audit_repo.find_successful_entry(
                session,
                account_id=account_id,
                document_type=document_type,
                external_source_id=external_source_id,
            )
        if entry is None:
            return None
        return entry.result_desc or entry.new_code or ""
