from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billbus.core.config import Settings, get_settings
from billbus.services.audit import AuditLog
from billbus.services.config_store import YamlConfigStore
from billbus.services.database import DatabaseGateway
from billbus.services.dispatch import DispatchResolver, HandlerRegistry, default_handler_registry
from billbus.services.handlers import HandlerContext
from billbus.services.tasks.engine import TaskEngine
from billbus.services.tasks.registry import TaskHandlerRegistry
from billbus.services.tokens import TokenGuard


logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Process-wide collaborators, built once per API app or worker."""

    settings: Settings
    store: YamlConfigStore
    gateway: DatabaseGateway
    tokens: TokenGuard
    audit: AuditLog
    resolver: DispatchResolver
    engine: TaskEngine

    async def aclose(self) -> None:
        await self.engine.aclose()
        await self.gateway.dispose()


def build_runtime(
    *,
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    config_dir: str | None = None,
    handler_registry: HandlerRegistry | None = None,
    task_handlers: TaskHandlerRegistry | None = None,
    http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
    validate: bool = False,
) -> Runtime:
    settings = settings or get_settings()
    if session_factory is None:
        from billbus.persistence.db import SessionLocal

        session_factory = SessionLocal
    store = YamlConfigStore(config_dir or settings.config_dir)
    gateway = DatabaseGateway(store, settings)
    tokens = TokenGuard(session_factory, idle_minutes=settings.token_idle_minutes)
    audit = AuditLog(session_factory, fallback_dir=settings.audit_fallback_dir)
    context = HandlerContext(
        store=store,
        gateway=gateway,
        tokens=tokens,
        audit=audit,
        session_factory=session_factory,
        settings=settings,
        http_client_factory=http_client_factory,
    )
    handler_registry = handler_registry or default_handler_registry()
    task_handlers = task_handlers or TaskHandlerRegistry()
    if validate:
        # Unknown handler variants fail here rather than on first request.
        store.validate_handlers(handler_registry.names(), task_handlers.names())
    resolver = DispatchResolver(context, handler_registry)
    engine = TaskEngine(
        store=store,
        gateway=gateway,
        resolver=resolver,
        session_factory=session_factory,
        task_handlers=task_handlers,
        settings=settings,
    )
    logger.info("runtime_built config_dir=%s", store.root)
    return Runtime(
        settings=settings,
        store=store,
        gateway=gateway,
        tokens=tokens,
        audit=audit,
        resolver=resolver,
        engine=engine,
    )
