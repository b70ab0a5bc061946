from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from functools import partial
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billbus.core.config import Settings, get_settings
from billbus.core.errors import BillBusError
from billbus.domain.config import TaskDefinition
from billbus.domain.envelope import BillRequest, BillResult
from billbus.domain.models import Task
from billbus.persistence.repos import tasks as tasks_repo
from billbus.persistence.repos import watermarks as watermarks_repo
from billbus.services.config_store import YamlConfigStore
from billbus.services.database import DatabaseGateway, Row
from billbus.services.dispatch import DispatchResolver
from billbus.services.sql_templates import lookup_field, stringify, watermark_max, watermark_text
from billbus.services.tasks.registry import TaskHandlerRegistry
from billbus.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

WATERMARK_PARAM = "watermark"

# Source columns copied onto the task row, by task attribute.
_DESCRIPTIVE_COLUMNS = {
    "document_type_name": "cBillTypeName",
    "document_code": "cBillCode",
    "define1": "cDefine1",
    "define2": "cDefine2",
    "define3": "cDefine3",
    "define4": "cDefine4",
    "define5": "cDefine5",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _descriptive(row: Row) -> dict[str, str | None]:
    values: dict[str, str | None] = {}
    for attribute, column in _DESCRIPTIVE_COLUMNS.items():
        value = lookup_field(row, column)
        values[attribute] = stringify(value).strip() if value is not None else None
    return values


def task_request(task: Task) -> BillRequest:
    # Task rows carry everything a handler needs to locate the source record again.
    head: dict[str, Any] = {
        "iId": task.source_record_id,
        "cOpTag": task.op_tag,
        "GUID": task.guid,
    }
    for attribute, column in _DESCRIPTIVE_COLUMNS.items():
        head[column] = getattr(task, attribute) or ""
    return BillRequest(
        accno=task.account_id,
        billtype=task.document_type,
        head=head,
        source_record_id=task.source_record_id,
        op_tag=task.op_tag,
        task_guid=task.guid,
    )


@dataclass
class PassSummary:
    status: str = "ok"
    definitions: int = 0
    detection_failures: int = 0
    tasks_created: int = 0
    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class TaskEngine:
    """Watermark-driven change detection plus bounded dispatch of queued tasks.

    At most one pass runs at a time; a pass requested while another is in
    progress is skipped, not queued.
    """

    def __init__(
        self,
        *,
        store: YamlConfigStore,
        gateway: DatabaseGateway,
        resolver: DispatchResolver,
        session_factory: async_sessionmaker[AsyncSession],
        task_handlers: TaskHandlerRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.resolver = resolver
        self.session_factory = session_factory
        self.task_handlers = task_handlers or TaskHandlerRegistry()
        self.settings = settings or get_settings()
        self._pass_lock = asyncio.Lock()
        # At most one running custom handler per definition key.
        self._custom_tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def max_attempts(self) -> int:
        return max(1, int(self.settings.task_max_attempts))

    async def run_pass(self, stop_event: asyncio.Event | None = None) -> PassSummary:
        if self._pass_lock.locked():
            logger.info("task_pass_skipped reason=in_progress")
            increment_counter("task_pass_skipped")
            return PassSummary(status="skipped_busy")
        async with self._pass_lock:
            return await self._run_pass(stop_event)

    async def _run_pass(self, stop_event: asyncio.Event | None) -> PassSummary:
        summary = PassSummary()
        for definition in self.store.task_definitions():
            if stop_event is not None and stop_event.is_set():
                summary.status = "stopped"
                return summary
            if not definition.enabled:
                continue
            summary.definitions += 1
            # One bad definition must not starve the others.
            try:
                if definition.custom:
                    self._launch_custom(definition)
                else:
                    summary.tasks_created += await self.detect(definition)
            except Exception:  # noqa: BLE001 - isolate per-definition failures and keep the pass going.
                summary.detection_failures += 1
                increment_counter("task_detection_failures")
                logger.exception("task_detection_failed key=%s", definition.key)
        await self.dispatch_pending(summary, stop_event)
        logger.info(
            "task_pass_completed status=%s created=%s dispatched=%s succeeded=%s failed=%s",
            summary.status,
            summary.tasks_created,
            summary.dispatched,
            summary.succeeded,
            summary.failed,
        )
        return summary

    async def detect(self, definition: TaskDefinition) -> int:
        async with self.session_factory() as session:
            watermark = await watermarks_repo.get_or_create(
                session, account_id=definition.account_id, document_type=definition.document_type
            )
            await session.commit()

        database = await self.gateway.for_account(definition.account_id)
        rows = await database.fetch_all(definition.extraction_sql, {WATERMARK_PARAM: watermark})
        if not rows:
            return 0

        created = 0
        async with self.session_factory() as session:
            for row in rows:
                record_id = stringify(lookup_field(row, definition.record_id_column)).strip()
                op_tag = stringify(lookup_field(row, definition.op_tag_column)).strip()
                if await tasks_repo.has_open_task(
                    session,
                    account_id=definition.account_id,
                    document_type=definition.document_type,
                    source_record_id=record_id,
                    op_tag=op_tag,
                    max_attempts=self.max_attempts,
                ):
                    continue
                await tasks_repo.create_task(
                    session,
                    account_id=definition.account_id,
                    document_type=definition.document_type,
                    source_record_id=record_id,
                    op_tag=op_tag,
                    descriptive=_descriptive(row),
                )
                created += 1
            highest = watermark_max([lookup_field(row, definition.watermark_column) for row in rows])
            if highest is not None:
                await watermarks_repo.advance(
                    session,
                    account_id=definition.account_id,
                    document_type=definition.document_type,
                    value=watermark_text(highest),
                )
            await session.commit()

        increment_counter("task_rows_detected", len(rows))
        logger.info(
            "task_detection key=%s rows=%s created=%s watermark=%s",
            definition.key,
            len(rows),
            created,
            watermark_text(highest),
        )
        return created

    async def dispatch_pending(
        self, summary: PassSummary | None = None, stop_event: asyncio.Event | None = None
    ) -> PassSummary:
        summary = summary or PassSummary()
        async with self.session_factory() as session:
            pending = await tasks_repo.list_pending(
                session,
                limit=max(1, int(self.settings.task_batch_size)),
                max_attempts=self.max_attempts,
            )
        for task in pending:
            if stop_event is not None and stop_event.is_set():
                summary.status = "stopped"
                break
            result = await self._dispatch_one(task)
            async with self.session_factory() as session:
                await tasks_repo.record_attempt(
                    session,
                    task.id,
                    success=result.ok,
                    result_desc=result.desc,
                    attempted_at=_utc_now(),
                )
                await session.commit()
            summary.dispatched += 1
            if result.ok:
                summary.succeeded += 1
            else:
                summary.failed += 1
                if task.attempt_count + 1 >= self.max_attempts:
                    increment_counter("task_terminal_failures")
                    logger.warning(
                        "task_terminal_failed task_id=%s account_id=%s document_type=%s desc=%s",
                        task.id,
                        task.account_id,
                        task.document_type,
                        result.desc,
                    )
        increment_counter("task_attempts", summary.dispatched)
        return summary

    async def _dispatch_one(self, task: Task) -> BillResult:
        try:
            handler = self.resolver.resolve(task.account_id, task.document_type)
            return await handler.write(task_request(task), internal=True)
        except BillBusError as exc:
            return BillResult.failure(str(exc), code=exc.code)
        except Exception as exc:  # noqa: BLE001 - a crashing handler counts as a failed attempt.
            logger.exception("task_dispatch_failed task_id=%s", task.id)
            return BillResult.failure(str(exc) or type(exc).__name__)

    def _launch_custom(self, definition: TaskDefinition) -> None:
        # Custom handlers run alongside the pass; the pass does not wait for them.
        handler = self.task_handlers.get(definition.handler)
        running = self._custom_tasks.get(definition.key)
        if running is not None and not running.done():
            increment_counter("task_custom_skipped")
            logger.info("custom_task_skipped key=%s reason=still_running", definition.key)
            return
        task = asyncio.create_task(handler.handle(definition), name=f"custom-task:{definition.key}")
        self._custom_tasks[definition.key] = task
        task.add_done_callback(partial(self._custom_done, definition.key))

    def _custom_done(self, key: str, task: asyncio.Task[None]) -> None:
        if self._custom_tasks.get(key) is task:
            del self._custom_tasks[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            increment_counter("task_custom_failures")
            logger.error("custom_task_failed name=%s", task.get_name(), exc_info=exc)

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        interval = max(1, int(self.settings.task_interval_s))
        logger.info("task_engine_started interval_s=%s", interval)
        while not stop_event.is_set():
            # Wait first; a stop request interrupts the wait.
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.run_pass(stop_event)
            except Exception:  # noqa: BLE001 - keep loop alive while surfacing errors in logs.
                logger.exception("task_pass_failed")
        await self.aclose()
        logger.info("task_engine_stopped")

    async def aclose(self) -> None:
        pending = list(self._custom_tasks.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
