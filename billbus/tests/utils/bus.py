from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import httpx
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
import yaml

from billbus.core.config import get_settings
from billbus.persistence.db import SessionLocal
from billbus.services.runtime import Runtime, build_runtime
from billbus.services.tasks.registry import TaskHandlerRegistry


ACCOUNT_ID = "001"
PEER_URL = "http://peer.test/api/json/set"

_ACCOUNT_SCHEMA = [
    """
    CREATE TABLE bill_head (
        iId INTEGER PRIMARY KEY AUTOINCREMENT,
        cCode TEXT NOT NULL DEFAULT '',
        cMaker TEXT,
        iRows INTEGER,
        cSrcID TEXT,
        cMemo TEXT
    )
    """,
    """
    CREATE TABLE bill_body (
        iIds INTEGER PRIMARY KEY,
        iId INTEGER NOT NULL,
        iRowNo INTEGER,
        qty INTEGER CHECK (qty > 0),
        cHeadCode TEXT
    )
    """,
    """
    CREATE TABLE source_orders (
        iId INTEGER PRIMARY KEY,
        cOpFlag TEXT,
        cBillCode TEXT,
        cDefine1 TEXT,
        dModify TEXT NOT NULL
    )
    """,
    # Another document's line so sub-ids must continue from an existing maximum.
    "INSERT INTO bill_body (iIds, iId, iRowNo, qty) VALUES (10, 0, 1, 1)",
]

SAVE_HEAD = [
    "INSERT INTO bill_head (cMaker, iRows, cSrcID) VALUES (:cMaker, :iRows, :cSrcID)",
    "UPDATE bill_head SET cCode = 'T1-' || iId WHERE iId = last_insert_rowid()",
    """
    SELECT h.iId, h.cCode, (SELECT COALESCE(MAX(iIds), 0) FROM bill_body) AS iIds
    FROM bill_head h WHERE h.iId = last_insert_rowid()
    """,
]
SAVE_BODY = "INSERT INTO bill_body (iIds, iId, iRowNo, qty, cHeadCode) VALUES (:iIds, :iId, :iRowNo, :qty, :m_cCode)"
AFTER_SAVE = "UPDATE bill_head SET cMemo = 'saved' WHERE iId = :iId"
FIND = "SELECT iId, cCode, cMaker, iRows FROM bill_head WHERE 1 = 1 {where} ORDER BY iId"

EXTRACTION_SQL = (
    "SELECT iId, cOpFlag, cBillCode, cDefine1, dModify FROM source_orders "
    "WHERE dModify > :watermark ORDER BY dModify"
)


def _dump(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")


def generic_document(**overrides: Any) -> dict[str, Any]:
    document: dict[str, Any] = {
        "handler": "generic",
        "require_token": False,
        "log_payload": True,
        "default_maker": "bus",
        "sqls": {
            "Find": FIND,
            "SaveHead": SAVE_HEAD,
            "SaveBody": SAVE_BODY,
            "AfterSave": AFTER_SAVE,
        },
    }
    document.update(overrides)
    return document


@dataclass
class BusFixture:
    root: Path
    config_dir: Path
    fallback_dir: Path
    account_db_url: str
    runtime: Runtime

    def write_document_type(self, document_type: str, document: dict[str, Any]) -> None:
        _dump(self.config_dir / ACCOUNT_ID / f"{document_type}.yaml", document)
        self.runtime.store.invalidate()

    def write_tasks(self, tasks: list[dict[str, Any]]) -> None:
        _dump(self.config_dir / "tasks.yaml", {"tasks": tasks})
        self.runtime.store.invalidate()

    async def account_query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        engine = create_async_engine(self.account_db_url)
        try:
            async with engine.begin() as conn:
                result = await conn.execute(text(sql), params or {})
                rows = [dict(row) for row in result.mappings().all()] if result.returns_rows else []
        finally:
            await engine.dispose()
        return rows


async def create_bus(
    root: Path,
    *,
    http_handler: Callable[[httpx.Request], httpx.Response] | None = None,
    task_handlers: TaskHandlerRegistry | None = None,
) -> BusFixture:
    """Build an account database, YAML config tree and runtime under `root`."""
    config_dir = root / "config"
    fallback_dir = root / "logs"
    account_db_url = f"sqlite+aiosqlite:///{root / 'account.db'}"

    engine = create_async_engine(account_db_url)
    try:
        async with engine.begin() as conn:
            for statement in _ACCOUNT_SCHEMA:
                await conn.execute(text(statement))
    finally:
        await engine.dispose()

    _dump(
        config_dir / "accounts.yaml",
        {
            "default_account": ACCOUNT_ID,
            "accounts": [
                {"account_id": ACCOUNT_ID, "engine": "sqlite", "database": str(root / "account.db")},
            ],
        },
    )
    _dump(config_dir / ACCOUNT_ID / "T1.yaml", generic_document())
    _dump(config_dir / ACCOUNT_ID / "T2.yaml", generic_document(require_token=True))
    _dump(
        config_dir / ACCOUNT_ID / "F1.yaml",
        {
            "handler": "forward",
            "sqls": {
                "Find": "SELECT iId, cCode, cMaker FROM bill_head WHERE iId = :iId",
                "FindBody": "SELECT iRowNo, qty FROM bill_body WHERE iId = :iId ORDER BY iRowNo",
            },
            "forward": {"account_id": "002", "document_type": "SO", "url": PEER_URL, "method": "POST"},
        },
    )

    settings = get_settings().model_copy(
        update={"config_dir": str(config_dir), "audit_fallback_dir": str(fallback_dir)}
    )
    def client_factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(http_handler))

    runtime = build_runtime(
        settings=settings,
        session_factory=SessionLocal,
        task_handlers=task_handlers,
        http_client_factory=client_factory if http_handler is not None else None,
    )
    return BusFixture(
        root=root,
        config_dir=config_dir,
        fallback_dir=fallback_dir,
        account_db_url=account_db_url,
        runtime=runtime,
    )
