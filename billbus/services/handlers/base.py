from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billbus.core.config import Settings, get_settings
from billbus.core.errors import BillBusError, ConfigNotFoundError, DuplicateEntryError, InvalidTokenError
from billbus.domain.config import TEMPLATE_FIND, DocumentTypeConfig
from billbus.domain.envelope import BillRequest, BillResult
from billbus.persistence.repos import claims as claims_repo
from billbus.services.audit import AuditLog, AuditRecord
from billbus.services.config_store import YamlConfigStore
from billbus.services.database import DatabaseGateway, Row
from billbus.services.sql_templates import lookup_field, render_find, stringify_row
from billbus.services.telemetry import increment_counter
from billbus.services.tokens import TokenGuard


logger = logging.getLogger(__name__)

OPERATION_WRITE = "write"


def db_error_message(exc: SQLAlchemyError) -> str:
    # Surface the driver's message rather than SQLAlchemy's wrapper text.
    orig = getattr(exc, "orig", None)
    return str(orig or exc).strip()


@dataclass
class HandlerContext:
    """Collaborators shared by every handler instance."""

    store: YamlConfigStore
    gateway: DatabaseGateway
    tokens: TokenGuard
    audit: AuditLog
    session_factory: async_sessionmaker[AsyncSession]
    settings: Settings = field(default_factory=get_settings)
    http_client_factory: Callable[[], httpx.AsyncClient] | None = None

    def http_client(self) -> httpx.AsyncClient:
        if self.http_client_factory is not None:
            return self.http_client_factory()
        return httpx.AsyncClient(timeout=self.settings.forward_timeout_s)


class BillHandler(ABC):
    """One document type's behavior behind the {fetch, write} capability set.

    `write` is fixed: token gate, duplicate suppression, `persist`, audit.
    Variants only supply `persist` (and may widen `find`).
    """

    def __init__(self, config: DocumentTypeConfig, context: HandlerContext) -> None:
        self.config = config
        self.context = context

    @property
    def account_id(self) -> str:
        return self.config.account_id

    @property
    def document_type(self) -> str:
        return self.config.document_type

    async def fetch(self, request: BillRequest) -> BillResult:
        try:
            if self.config.require_token:
                await self._check_token(request.token)
            self.context.store.account(self.account_id)
            rows = await self.find(request)
        except BillBusError as exc:
            return BillResult.failure(str(exc), code=exc.code)
        except SQLAlchemyError as exc:
            logger.warning(
                "fetch_failed account_id=%s document_type=%s", self.account_id, self.document_type, exc_info=exc
            )
            return BillResult.failure(db_error_message(exc))
        return BillResult().set_success([stringify_row(row) for row in rows])

    async def find(self, request: BillRequest) -> list[Row]:
        statements, params = render_find(self.config.template(TEMPLATE_FIND), request.where)
        if not statements:
            raise ConfigNotFoundError(f"no Find template configured for {self.account_id}/{self.document_type}")
        database = await self.context.gateway.for_account(self.account_id)
        return await database.fetch_all(statements, {**request.head, **params})

    async def write(self, request: BillRequest, *, internal: bool = False) -> BillResult:
        source_id = request.external_source_id
        try:
            # Internal callers (the task engine) are trusted and skip the token gate.
            if self.config.require_token and not internal:
                await self._check_token(request.token)
            self.context.store.account(self.account_id)
            if source_id:
                await self._check_duplicate(source_id)
                await self._claim(source_id)
        except BillBusError as exc:
            increment_counter(f"write_rejected.{type(exc).__name__}")
            result = BillResult.failure(str(exc), code=exc.code)
            result.csrc_sys_id = source_id or ""
            return result
        except SQLAlchemyError as exc:
            # The system database is unreachable; nothing has been written yet.
            logger.error(
                "write_precheck_failed account_id=%s document_type=%s",
                self.account_id,
                self.document_type,
                exc_info=exc,
            )
            result = BillResult.failure(db_error_message(exc))
            result.csrc_sys_id = source_id or ""
            return result

        try:
            result = await self._persist_result(request)
        except BaseException:
            # Cancelled mid-write; the account transaction has already rolled back.
            if source_id:
                await self._release(source_id)
            raise
        result.csrc_sys_id = source_id or ""

        if not result.ok:
            logger.warning(
                "write_failed account_id=%s document_type=%s desc=%s",
                self.account_id,
                self.document_type,
                result.desc,
            )
            if source_id:
                await self._release(source_id)
        increment_counter("write_ok" if result.ok else "write_failed")
        await self._audit(request, result)
        return result

    async def _persist_result(self, request: BillRequest) -> BillResult:
        try:
            return await self.persist(request)
        except BillBusError as exc:
            return BillResult.failure(str(exc), code=exc.code)
        except SQLAlchemyError as exc:
            return BillResult.failure(db_error_message(exc))
        except Exception as exc:
            # Unexpected faults still get a result envelope and an audit entry.
            logger.exception("write_crashed account_id=%s document_type=%s", self.account_id, self.document_type)
            return BillResult.failure(str(exc) or type(exc).__name__)

    @abstractmethod
    async def persist(self, request: BillRequest) -> BillResult:
        """Apply the document; raise a BillBusError or return an NG result on failure."""

    async def _check_token(self, token: str | None) -> None:
        # Refresh only after a successful check.
        if not await self.context.tokens.check(token):
            raise InvalidTokenError("invalid token")
        await self.context.tokens.refresh(token or "")

    async def _check_duplicate(self, source_id: str) -> None:
        prior = await self.context.audit.prior_success(
            account_id=self.account_id,
            document_type=self.document_type,
            external_source_id=source_id,
        )
        if prior is not None:
            raise DuplicateEntryError(f"a document with external source id {source_id} already exists: {prior}")

    async def _claim(self, source_id: str) -> None:
        now = datetime.now(timezone.utc)
        async with self.context.session_factory() as session:
            claimed = await claims_repo.claim_source(
                session,
                account_id=self.account_id,
                document_type=self.document_type,
                external_source_id=source_id,
                now=now,
                stale_before=now - timedelta(seconds=self.context.settings.source_claim_stale_s),
            )
        if not claimed:
            raise DuplicateEntryError(f"a document with external source id {source_id} is already being written")

    async def _release(self, source_id: str) -> None:
        try:
            async with self.context.session_factory() as session:
                await claims_repo.release_claim(
                    session,
                    account_id=self.account_id,
                    document_type=self.document_type,
                    external_source_id=source_id,
                )
        except SQLAlchemyError as exc:
            logger.error(
                "source_claim_release_failed account_id=%s document_type=%s source_id=%s",
                self.account_id,
                self.document_type,
                source_id,
                exc_info=exc,
            )

    def operator(self, request: BillRequest) -> str:
        maker = lookup_field(request.head, "cMaker")
        return str(maker).strip() if maker not in (None, "") else self.config.default_maker

    async def _audit(self, request: BillRequest, result: BillResult) -> None:
        await self.context.audit.append(
            AuditRecord(
                account_id=self.account_id,
                document_type=self.document_type,
                operation=OPERATION_WRITE,
                success=result.ok,
                result_desc=result.desc,
                operator=self.operator(request),
                new_id=result.new_bill_id,
                new_code=result.new_bill_code,
                external_source_id=request.external_source_id,
                payload=request.payload_json() if self.config.log_payload else None,
            )
        )
