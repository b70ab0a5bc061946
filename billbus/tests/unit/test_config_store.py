from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from billbus.core.errors import ConfigNotFoundError, HandlerNotRegisteredError
from billbus.services.config_store import YamlConfigStore


def _write(path: Path, data: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    _write(
        tmp_path / "accounts.yaml",
        {
            "default_account": "1",
            "accounts": [
                {"account_id": "1", "engine": "0", "host": "db", "database": "erp"},
                {"account_id": "002", "engine": "sqlite", "database": "x.db"},
            ],
        },
    )
    _write(tmp_path / "1" / "T1.yaml", {"handler": "generic", "sqls": {"Find": "SELECT 1 {where}"}})
    _write(
        tmp_path / "tasks.yaml",
        {
            "tasks": [
                {"account_id": "1", "document_type": "T1", "extraction_sql": "SELECT 1", "watermark_column": "d"},
                {"account_id": "1", "document_type": "T9", "custom": True, "handler": "ping"},
            ]
        },
    )
    return tmp_path


def test_registry_reads_ids_and_legacy_engine_codes(config_dir: Path) -> None:
    store = YamlConfigStore(config_dir)
    assert store.default_account == "1"
    assert store.account("1").engine == "mssql"
    assert store.resolve_account_id("") == "1"
    assert store.resolve_account_id("002") == "002"


def test_document_type_lookup_and_misses(config_dir: Path) -> None:
    store = YamlConfigStore(config_dir)
    config = store.document_type("1", "T1")
    assert config.account_id == "1"
    assert config.template("Find") == ["SELECT 1 {where}"]
    assert config.template("SaveHead") == []
    with pytest.raises(ConfigNotFoundError):
        store.document_type("1", "NOPE")
    with pytest.raises(ConfigNotFoundError):
        store.document_type("404", "T1")
    with pytest.raises(ConfigNotFoundError):
        store.document_type("1", "../accounts")


def test_store_rereads_changed_documents_after_invalidate(config_dir: Path) -> None:
    store = YamlConfigStore(config_dir)
    assert store.document_type("1", "T1").require_token is False
    _write(config_dir / "1" / "T1.yaml", {"handler": "generic", "require_token": True})
    store.invalidate()
    assert store.document_type("1", "T1").require_token is True


def test_task_definitions_are_loaded(config_dir: Path) -> None:
    definitions = YamlConfigStore(config_dir).task_definitions()
    assert [definition.key for definition in definitions] == ["1/T1", "1/T9"]
    assert definitions[0].record_id_column == "iId"
    assert definitions[1].custom is True


def test_validate_handlers_rejects_unknown_variants(config_dir: Path) -> None:
    store = YamlConfigStore(config_dir)
    store.validate_handlers({"generic", "forward"}, {"ping"})
    with pytest.raises(HandlerNotRegisteredError):
        store.validate_handlers({"forward"}, {"ping"})
    with pytest.raises(HandlerNotRegisteredError):
        store.validate_handlers({"generic"}, set())


def test_invalid_document_is_reported_as_missing_config(config_dir: Path) -> None:
    _write(config_dir / "1" / "BAD.yaml", {"handler": "generic", "unknown_key": 1})
    with pytest.raises(ConfigNotFoundError):
        YamlConfigStore(config_dir).document_type("1", "BAD")


def test_unquoted_numeric_account_ids_are_rejected(tmp_path: Path) -> None:
    # Unquoted `001` parses as the integer 1 and would never match account '001'.
    (tmp_path / "accounts.yaml").write_text(
        "default_account: '001'\naccounts:\n  - account_id: 001\n    engine: sqlite\n",
        encoding="utf-8",
    )
    with pytest.raises(ConfigNotFoundError, match="quoted"):
        YamlConfigStore(tmp_path).registry()


def test_unquoted_default_account_is_rejected(tmp_path: Path) -> None:
    (tmp_path / "accounts.yaml").write_text(
        "default_account: 7\naccounts:\n  - account_id: '7'\n    engine: sqlite\n",
        encoding="utf-8",
    )
    with pytest.raises(ConfigNotFoundError, match="quoted"):
        YamlConfigStore(tmp_path).registry()
