from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# SQLite only autoincrements INTEGER primary keys; keep BIGINT elsewhere.
_AUTO_ID = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


class AuditLogEntry(Base):
    __tablename__ = "audit_log"
    __table_args__ = (
        # One successful entry per external-source id and document type.
        Index(
            "uq_audit_log_success_source",
            "account_id",
            "document_type",
            "external_source_id",
            unique=True,
            postgresql_where=text("success AND external_source_id IS NOT NULL"),
            sqlite_where=text("success = 1 AND external_source_id IS NOT NULL"),
        ),
        Index("ix_audit_log_account_type_time", "account_id", "document_type", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    account_id: Mapped[str] = mapped_column(String)
    document_type: Mapped[str] = mapped_column(String)
    operator: Mapped[str | None] = mapped_column(String, nullable=True)
    operation: Mapped[str] = mapped_column(String)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    result_desc: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_id: Mapped[str | None] = mapped_column(String, nullable=True)
    new_code: Mapped[str | None] = mapped_column(String, nullable=True)
    external_source_id: Mapped[str | None] = mapped_column(String, nullable=True)
    # Raw inbound document; only stored when the document type opts in.
    payload: Mapped[str | None] = mapped_column(Text, nullable=True)


class ApiToken(Base):
    __tablename__ = "api_tokens"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_active_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index(
            "ix_tasks_source",
            "account_id",
            "document_type",
            "source_record_id",
            "op_tag",
        ),
        Index("ix_tasks_pending", "done", "attempt_count", "id"),
    )

    # Monotonic id doubles as creation order for batch selection.
    id: Mapped[int] = mapped_column(_AUTO_ID, primary_key=True, autoincrement=True)
    guid: Mapped[str] = mapped_column(String, unique=True)
    account_id: Mapped[str] = mapped_column(String)
    document_type: Mapped[str] = mapped_column(String)
    source_record_id: Mapped[str] = mapped_column(String)
    op_tag: Mapped[str] = mapped_column(String, default="")
    # Denormalized columns copied from the detected source row.
    document_type_name: Mapped[str | None] = mapped_column(String, nullable=True)
    document_code: Mapped[str | None] = mapped_column(String, nullable=True)
    define1: Mapped[str | None] = mapped_column(String, nullable=True)
    define2: Mapped[str | None] = mapped_column(String, nullable=True)
    define3: Mapped[str | None] = mapped_column(String, nullable=True)
    define4: Mapped[str | None] = mapped_column(String, nullable=True)
    define5: Mapped[str | None] = mapped_column(String, nullable=True)
    done: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    result_desc: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class TaskWatermark(Base):
    __tablename__ = "task_watermarks"

    account_id: Mapped[str] = mapped_column(String, primary_key=True)
    document_type: Mapped[str] = mapped_column(String, primary_key=True)
    # String-typed so one table serves integer, timestamp and code watermarks.
    max_value: Mapped[str] = mapped_column(String, nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class SourceClaim(Base):
    __tablename__ = "source_claims"

    # Reserved before the account transaction opens; closes the duplicate-check race.
    account_id: Mapped[str] = mapped_column(String, primary_key=True)
    document_type: Mapped[str] = mapped_column(String, primary_key=True)
    external_source_id: Mapped[str] = mapped_column(String, primary_key=True)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
