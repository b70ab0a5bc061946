from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


EngineKind = Literal["mssql", "oracle", "postgresql", "sqlite"]
SqlTemplate = str | list[str]

# Legacy numeric engine codes carried over from older account registries.
_LEGACY_ENGINE_CODES = {"0": "mssql", "1": "oracle"}

TEMPLATE_FIND = "Find"
TEMPLATE_FIND_BODY = "FindBody"
TEMPLATE_SAVE_HEAD = "SaveHead"
TEMPLATE_SAVE_BODY = "SaveBody"
TEMPLATE_AFTER_SAVE = "AfterSave"


def _quoted_account_id(value: object) -> object:
    # Unquoted YAML numbers drop leading zeros (`001` is 1, `010` is octal 8), so ids must be quoted.
    if isinstance(value, (int, float)):
        raise ValueError(f"account id {value!r} must be a quoted string, e.g. '001'")
    return value


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AccountConfig(_Frozen):
    account_id: str
    engine: EngineKind = "mssql"
    # A full SQLAlchemy URL overrides the discrete connection fields.
    url: str | None = None
    host: str | None = None
    port: int | None = None
    database: str | None = None
    service_name: str | None = None
    user: str | None = None
    password: str | None = None
    odbc_driver: str = "ODBC Driver 18 for SQL Server"

    @field_validator("engine", mode="before")
    @classmethod
    def _normalize_engine(cls, value: object) -> object:
        if value is None:
            return "mssql"
        text = str(value).strip().lower()
        return _LEGACY_ENGINE_CODES.get(text, text)

    @field_validator("account_id", mode="before")
    @classmethod
    def _check_account_id(cls, value: object) -> object:
        return _quoted_account_id(value)


class ForwardTarget(_Frozen):
    account_id: str
    document_type: str
    url: str
    method: str = "POST"

    @field_validator("account_id", mode="before")
    @classmethod
    def _check_account_id(cls, value: object) -> object:
        return _quoted_account_id(value)


class DocumentTypeConfig(_Frozen):
    account_id: str
    document_type: str
    handler: str = "generic"
    require_token: bool = False
    log_payload: bool = False
    default_maker: str = ""
    sqls: dict[str, SqlTemplate] = Field(default_factory=dict)
    forward: ForwardTarget | None = None

    def template(self, role: str) -> list[str]:
        # Normalize a role to its ordered statement list; missing roles are empty.
        raw = self.sqls.get(role)
        if raw is None:
            return []
        statements = [raw] if isinstance(raw, str) else list(raw)
        return [stmt for stmt in statements if stmt and stmt.strip()]

    def has_template(self, role: str) -> bool:
        return bool(self.template(role))


class TaskDefinition(_Frozen):
    account_id: str
    document_type: str
    enabled: bool = True
    custom: bool = False
    # Registered custom handler name; required when `custom` is set.
    handler: str | None = None
    extraction_sql: str = ""
    watermark_column: str = ""
    record_id_column: str = "iId"
    op_tag_column: str = "cOpFlag"

    @field_validator("account_id", mode="before")
    @classmethod
    def _check_account_id(cls, value: object) -> object:
        return _quoted_account_id(value)

    @property
    def key(self) -> str:
        return f"{self.account_id}/{self.document_type}"


class Registry(_Frozen):
    default_account: str | None = None
    task_file: str = "tasks.yaml"
    accounts: tuple[AccountConfig, ...] = ()

    @field_validator("default_account", mode="before")
    @classmethod
    def _check_default_account(cls, value: object) -> object:
        return _quoted_account_id(value)

    def account(self, account_id: str) -> AccountConfig | None:
        for account in self.accounts:
            if account.account_id == account_id:
                return account
        return None
