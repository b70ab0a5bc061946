from __future__ import annotations


class BillBusError(Exception):
    """Base error for billbus; `code` is the envelope code surfaced to callers."""

    code = "1"


class ConfigNotFoundError(BillBusError):
    """Unknown account, document type or task registry."""


class HandlerNotRegisteredError(ConfigNotFoundError):
    """A configured handler variant has no registered factory."""


class InvalidTokenError(BillBusError):
    """Caller token is missing or has expired."""


class DuplicateEntryError(BillBusError):
    """A successful write already exists for the external-source id."""


class TransactionFailureError(BillBusError):
    """A database error inside the write transaction; the transaction was rolled back."""


class RemoteCallFailedError(BillBusError):
    """Transport failure while relaying a document to a remote peer."""


class RemoteRejectedError(BillBusError):
    """The remote peer answered with a non-success envelope."""


class AuditSinkFailureError(BillBusError):
    """The audit entry could not be persisted."""


class InvalidRequestError(BillBusError):
    """Malformed inbound request (bad filter, missing document type)."""
