from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator, Mapping

from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from billbus.core.config import Settings, get_settings
from billbus.domain.config import AccountConfig
from billbus.services.account_secrets import reveal_password
from billbus.services.config_store import YamlConfigStore
from billbus.services.sql_templates import bind_params


logger = logging.getLogger(__name__)

_DRIVERS = {
    "mssql": "mssql+aioodbc",
    "oracle": "oracle+oracledb",
    "postgresql": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}

Row = dict[str, Any]


def account_url(account: AccountConfig) -> URL:
    if account.url:
        return make_url(account.url)
    driver = _DRIVERS[account.engine]
    if account.engine == "sqlite":
        return URL.create(driver, database=account.database)
    query: dict[str, str] = {}
    if account.engine == "mssql":
        query["driver"] = account.odbc_driver
        query["TrustServerCertificate"] = "yes"
    if account.engine == "oracle" and account.service_name:
        query["service_name"] = account.service_name
    return URL.create(
        driver,
        username=account.user,
        password=reveal_password(account.password),
        host=account.host,
        port=account.port,
        database=account.database,
        query=query,
    )


async def _run(conn: AsyncConnection, statements: list[str], values: Mapping[str, Any]) -> list[Row]:
    # Statements share one connection; the last row-returning one is the result.
    rows: list[Row] = []
    for statement in statements:
        result = await conn.execute(text(statement), bind_params(statement, values))
        if result.returns_rows:
            rows = [dict(row) for row in result.mappings().all()]
    return rows


def _as_list(statements: str | list[str]) -> list[str]:
    return [statements] if isinstance(statements, str) else list(statements)


class AccountTransaction:
    """One open account transaction; rolled back by the owner on any error."""

    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    async def execute(self, statements: str | list[str], values: Mapping[str, Any]) -> list[Row]:
        return await _run(self._conn, _as_list(statements), values)


class AccountDatabase:
    def __init__(self, account_id: str, engine: AsyncEngine) -> None:
        self.account_id = account_id
        self.engine = engine

    async def fetch_all(self, statements: str | list[str], values: Mapping[str, Any] | None = None) -> list[Row]:
        async with self.engine.connect() as conn:
            rows = await _run(conn, _as_list(statements), values or {})
            await conn.commit()
        return rows

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AccountTransaction]:
        # Commit on clean exit, roll back when the block raises.
        async with self.engine.begin() as conn:
            yield AccountTransaction(conn)


class DatabaseGateway:
    """Caches one async engine per configured account."""

    def __init__(self, store: YamlConfigStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._engines: dict[str, tuple[AccountConfig, AsyncEngine]] = {}

    def _create_engine(self, account: AccountConfig) -> AsyncEngine:
        url = account_url(account)
        kwargs: dict[str, Any] = {"pool_pre_ping": True}
        if not url.drivername.startswith("sqlite"):
            kwargs["pool_size"] = max(1, int(self.settings.account_pool_size))
            kwargs["max_overflow"] = max(0, int(self.settings.account_max_overflow))
            kwargs["pool_recycle"] = int(self.settings.account_pool_recycle_s)
        logger.info("account_engine_created account_id=%s engine=%s", account.account_id, account.engine)
        return create_async_engine(url, **kwargs)

    async def for_account(self, account_id: str) -> AccountDatabase:
        account = self.store.account(account_id)
        cached = self._engines.get(account_id)
        if cached is not None and cached[0] == account:
            return AccountDatabase(account_id, cached[1])
        if cached is not None:
            # Connection settings changed on disk; retire the stale pool.
            await cached[1].dispose()
        engine = self._create_engine(account)
        self._engines[account_id] = (account, engine)
        return AccountDatabase(account_id, engine)

    async def dispose(self) -> None:
        engines = list(self._engines.values())
        self._engines.clear()
        for _, engine in engines:
            await engine.dispose()
