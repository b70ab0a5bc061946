from __future__ import annotations

import json
import re
from typing import Any
from xml.etree import ElementTree as ET

from billbus.core.errors import InvalidRequestError
from billbus.domain.envelope import BillResult


ROOT_TAG = "Doc"
# Characters outside an XML name; column aliases like `COUNT(*)` or `unit price` contain them.
_INVALID_TAG_CHARS = re.compile(r"[^\w.-]")
_TAG_START = re.compile(r"[^\W\d]")


def unwrap_body(raw: bytes) -> str:
    """Accept either a bare XML document or one sent as a JSON string literal."""
    text = raw.decode("utf-8-sig").strip()
    if text.startswith('"'):
        try:
            decoded = json.loads(text)
        except ValueError as exc:
            raise InvalidRequestError("request body is not a valid JSON string") from exc
        if not isinstance(decoded, str):
            raise InvalidRequestError("request body must be an XML document")
        text = decoded.strip()
    if not text:
        raise InvalidRequestError("request body is empty")
    return text


def _fields(element: ET.Element | None) -> dict[str, str]:
    if element is None:
        return {}
    return {child.tag: (child.text or "").strip() for child in element}


def parse_bill_xml(text: str) -> dict[str, Any]:
    """Map `<Doc BillType AccNo><Where/><Head/><Body><Row/></Body></Doc>` onto the JSON request shape."""
    try:
        root = ET.fromstring(text)
    except ET.ParseError as exc:
        raise InvalidRequestError(f"invalid XML document: {exc}") from exc
    if root.tag != ROOT_TAG:
        raise InvalidRequestError(f"XML root element must be <{ROOT_TAG}>")
    billtype = root.get("BillType")
    if not billtype:
        raise InvalidRequestError("XML document has no BillType attribute")

    payload: dict[str, Any] = {
        "billtype": billtype,
        "accno": root.get("AccNo") or "",
    }
    where = root.find("Where")
    if where is not None and (where.text or "").strip():
        payload["where"] = where.text.strip()
    head = _fields(root.find("Head"))
    if head:
        payload["head"] = head
    rows = [_fields(row) for row in root.findall("Body/Row")]
    rows = [row for row in rows if row]
    if rows:
        payload["body"] = rows
    return payload


def _tag_name(key: str) -> str:
    name = _INVALID_TAG_CHARS.sub("_", str(key).strip())
    if not name or not _TAG_START.match(name):
        name = f"_{name}"
    return name


def render_result_xml(result: BillResult) -> str:
    root = ET.Element(ROOT_TAG)
    for record in result.data:
        row = ET.SubElement(root, "Row")
        for key, value in record.items():
            ET.SubElement(row, _tag_name(key)).text = str(value).strip()
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>{body}'
