from __future__ import annotations

import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Callable, TypeVar

import yaml

from billbus.core.config import get_settings
from billbus.core.errors import ConfigNotFoundError, HandlerNotRegisteredError
from billbus.domain.config import AccountConfig, DocumentTypeConfig, Registry, TaskDefinition


logger = logging.getLogger(__name__)

ACCOUNTS_FILE = "accounts.yaml"

T = TypeVar("T")


class YamlConfigStore:
    """Read-only lookup over the YAML documents under `config_dir`.

    Parsed documents are cached per file and re-read when the file's
    modification time changes; `invalidate()` drops the cache outright.
    """

    def __init__(self, config_dir: str | os.PathLike[str] | None = None) -> None:
        self.root = Path(config_dir or get_settings().config_dir)
        self._cache: dict[Path, tuple[float, Any]] = {}
        self._lock = Lock()

    def invalidate(self) -> None:
        with self._lock:
            self._cache.clear()

    def _load(self, path: Path, build: Callable[[Any], T], *, missing: str) -> T:
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError as exc:
            raise ConfigNotFoundError(missing) from exc
        with self._lock:
            cached = self._cache.get(path)
            if cached is not None and cached[0] == mtime:
                return cached[1]
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            value = build(raw)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.error("config_document_invalid path=%s", path, exc_info=exc)
            raise ConfigNotFoundError(f"invalid config document {path.name}: {exc}") from exc
        with self._lock:
            self._cache[path] = (mtime, value)
        return value

    def registry(self) -> Registry:
        return self._load(
            self.root / ACCOUNTS_FILE,
            lambda raw: Registry.model_validate(raw),
            missing=f"account registry not found under {self.root}",
        )

    @property
    def default_account(self) -> str | None:
        return self.registry().default_account

    def resolve_account_id(self, account_id: str | None) -> str:
        # Callers may omit the account; fall back to the configured default.
        candidate = (account_id or "").strip() or (self.default_account or "")
        if not candidate:
            raise ConfigNotFoundError("no account given and no default account configured")
        return candidate

    def account(self, account_id: str) -> AccountConfig:
        account = self.registry().account(account_id)
        if account is None:
            raise ConfigNotFoundError(f"account {account_id} is not configured")
        return account

    def document_type(self, account_id: str, document_type: str) -> DocumentTypeConfig:
        if not document_type or "/" in document_type or "\\" in document_type or document_type.startswith("."):
            raise ConfigNotFoundError(f"document type {document_type!r} is not configured")
        self.account(account_id)
        path = self.root / account_id / f"{document_type}.yaml"

        def build(raw: Any) -> DocumentTypeConfig:
            data = dict(raw)
            data.setdefault("account_id", account_id)
            data.setdefault("document_type", document_type)
            return DocumentTypeConfig.model_validate(data)

        return self._load(
            path,
            build,
            missing=f"document type {document_type} is not configured for account {account_id}",
        )

    def document_types(self, account_id: str) -> list[DocumentTypeConfig]:
        folder = self.root / account_id
        if not folder.is_dir():
            return []
        return [self.document_type(account_id, path.stem) for path in sorted(folder.glob("*.yaml"))]

    def task_definitions(self) -> list[TaskDefinition]:
        registry = self.registry()
        path = self.root / registry.task_file
        if not path.exists():
            return []

        def build(raw: Any) -> tuple[TaskDefinition, ...]:
            items = raw.get("tasks", []) if isinstance(raw, dict) else raw
            return tuple(TaskDefinition.model_validate(item) for item in items or [])

        return list(self._load(path, build, missing=f"task registry {registry.task_file} not found"))

    def validate_handlers(self, handler_names: set[str], task_handler_names: set[str]) -> None:
        # Fail at startup on variants nothing can construct.
        for account in self.registry().accounts:
            for config in self.document_types(account.account_id):
                if config.handler not in handler_names:
                    raise HandlerNotRegisteredError(
                        f"handler {config.handler!r} for {account.account_id}/{config.document_type} is not registered"
                    )
                if config.handler == "forward" and config.forward is None:
                    raise ConfigNotFoundError(
                        f"forward handler for {account.account_id}/{config.document_type} has no forward target"
                    )
        for definition in self.task_definitions():
            if definition.custom and definition.handler not in task_handler_names:
                raise HandlerNotRegisteredError(
                    f"custom task handler {definition.handler!r} for {definition.key} is not registered"
                )
