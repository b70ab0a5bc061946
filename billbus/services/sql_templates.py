from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
import re
from typing import Any, Mapping

from billbus.core.errors import InvalidRequestError


# `:name` bind markers; skips `::casts`, escaped `\:` and time literals like `12:30`.
_BIND_PATTERN = re.compile(r"(?<![:\w\\]):(\w+)(?!:)")
_WHERE_PLACEHOLDERS = ("{where}", "{0}")

_IDENTIFIER = r"[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)?"
_CONDITION_PATTERN = re.compile(
    rf"^\s*(?P<column>{_IDENTIFIER})\s*"
    r"(?P<op><=|>=|<>|!=|=|<|>|LIKE)\s*"
    r"(?P<literal>'(?:[^']|'')*'|-?\d+(?:\.\d+)?)\s*$",
    re.IGNORECASE,
)
_AND_SPLIT = re.compile(r"\s+AND\s+(?=(?:[^']*'[^']*')*[^']*$)", re.IGNORECASE)
_IDENTIFIER_PATTERN = re.compile(rf"^{_IDENTIFIER}$")

_BLANK_MARKERS = ("", "-")


def bind_names(sql: str) -> list[str]:
    seen: list[str] = []
    for name in _BIND_PATTERN.findall(sql):
        if name not in seen:
            seen.append(name)
    return seen


def bind_params(sql: str, values: Mapping[str, Any]) -> dict[str, Any]:
    """Pick the values a statement references; names it cannot find bind as NULL.

    Lookup is exact first, then case-insensitive, so `:cmaker` matches a
    `cMaker` header field.
    """
    folded = {str(key).lower(): value for key, value in values.items()}
    params: dict[str, Any] = {}
    for name in bind_names(sql):
        if name in values:
            params[name] = values[name]
        else:
            params[name] = folded.get(name.lower())
    return params


def normalize_item_value(value: Any) -> Any:
    # Empty and placeholder item values are stored as NULL.
    if value is None:
        return None
    if isinstance(value, str) and value.strip() in _BLANK_MARKERS:
        return None
    return value


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


def stringify_row(row: Mapping[str, Any]) -> dict[str, str]:
    return {str(key): stringify(value) for key, value in row.items()}


def watermark_text(value: Any) -> str:
    # Watermarks persist as text; timestamps keep microseconds so ordering survives a round trip.
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    return str(value)


def watermark_max(values: list[Any]) -> Any:
    present = [value for value in values if value is not None]
    if not present:
        return None
    try:
        return max(present)
    except TypeError:
        # Mixed column types from a loosely typed source; compare by text.
        return max(present, key=watermark_text)


def _literal(raw: str) -> Any:
    if raw.startswith("'"):
        return raw[1:-1].replace("''", "'")
    if "." in raw:
        return float(raw)
    return int(raw)


def compile_where(where: str | Mapping[str, Any] | None) -> tuple[str, dict[str, Any]]:
    """Turn a caller filter into a SQL fragment plus bound parameters.

    A mapping becomes `col = :w0 AND ...`. A string may only hold simple
    `column OP literal` conditions joined by AND; every literal is bound.
    """
    if where is None:
        return "", {}
    clauses: list[str] = []
    params: dict[str, Any] = {}
    if isinstance(where, Mapping):
        for index, (column, value) in enumerate(where.items()):
            column = str(column)
            if not _IDENTIFIER_PATTERN.match(column):
                raise InvalidRequestError(f"invalid filter column: {column}")
            name = f"w{index}"
            clauses.append(f"{column} = :{name}")
            params[name] = value
        return " AND ".join(clauses), params

    text = where.strip()
    if not text:
        return "", {}
    for index, part in enumerate(_AND_SPLIT.split(text)):
        match = _CONDITION_PATTERN.match(part)
        if match is None:
            raise InvalidRequestError(f"unsupported filter condition: {part.strip()}")
        name = f"w{index}"
        op = match.group("op").upper()
        clauses.append(f"{match.group('column')} {op} :{name}")
        params[name] = _literal(match.group("literal"))
    return " AND ".join(clauses), params


def render_find(statements: list[str], where: str | Mapping[str, Any] | None) -> tuple[list[str], dict[str, Any]]:
    """Splice a caller filter into the `{where}` placeholder of a Find template."""
    fragment, params = compile_where(where)
    conjunction = f" AND {fragment}" if fragment else ""
    rendered: list[str] = []
    placed = False
    for statement in statements:
        for placeholder in _WHERE_PLACEHOLDERS:
            if placeholder in statement:
                statement = statement.replace(placeholder, conjunction)
                placed = True
        rendered.append(statement)
    if fragment and not placed:
        raise InvalidRequestError("this document type does not accept filters")
    return rendered, params


def lookup_field(row: Mapping[str, Any], name: str) -> Any:
    # Drivers disagree on column-name case; match exactly first, then case-insensitively.
    if name in row:
        return row[name]
    lowered = name.lower()
    for key, value in row.items():
        if str(key).lower() == lowered:
            return value
    return None
