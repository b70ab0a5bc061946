from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from billbus.apps.api.deps import get_runtime
from billbus.apps.api.errors import envelope_response
from billbus.apps.api.xml_codec import parse_bill_xml, render_result_xml, unwrap_body
from billbus.core.errors import BillBusError
from billbus.domain.envelope import BillRequest, BillResult
from billbus.services.runtime import Runtime
from billbus.services.sql_templates import lookup_field


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["data"])


class BillPayload(BaseModel):
    """Inbound document as posted by callers; unknown keys are ignored."""

    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    accno: str = ""
    billtype: str = ""
    token: str = ""
    where: str | dict[str, Any] | None = None
    head: dict[str, Any] = Field(default_factory=dict)
    body: list[dict[str, Any]] = Field(default_factory=list)

    def to_request(self) -> BillRequest:
        return BillRequest(
            accno=self.accno,
            billtype=self.billtype,
            token=self.token,
            where=self.where,
            head=self.head,
            body=self.body,
        )


def _source_id_echo(head: dict[str, Any]) -> str:
    for key in ("csrcsysid", "cSrcID"):
        value = lookup_field(head, key)
        if value is not None:
            return str(value)
    return ""


def _log_request(fmt: str, payload: BillPayload) -> None:
    logger.info(
        "bill_request format=%s account_id=%s document_type=%s rows=%s",
        fmt,
        payload.accno or "-",
        payload.billtype,
        len(payload.body),
    )


async def _fetch(runtime: Runtime, payload: BillPayload) -> BillResult:
    try:
        handler = runtime.resolver.resolve(payload.accno, payload.billtype)
    except BillBusError as exc:
        return BillResult.failure(str(exc), code=exc.code)
    return await handler.fetch(payload.to_request())


async def _write(runtime: Runtime, payload: BillPayload) -> BillResult:
    try:
        handler = runtime.resolver.resolve(payload.accno, payload.billtype)
    except BillBusError as exc:
        return BillResult.failure(str(exc), code=exc.code)
    return await handler.write(payload.to_request())


async def _xml_payload(request: Request) -> BillPayload:
    text = unwrap_body(await request.body())
    return BillPayload.model_validate(parse_bill_xml(text))


@router.post("/json/get")
async def json_get(payload: BillPayload, runtime: Runtime = Depends(get_runtime)) -> JSONResponse:
    _log_request("json", payload)
    return envelope_response(await _fetch(runtime, payload))


@router.post("/json/set")
async def json_set(payload: BillPayload, runtime: Runtime = Depends(get_runtime)) -> JSONResponse:
    _log_request("json", payload)
    result = await _write(runtime, payload)
    result.csrc_sys_id = _source_id_echo(payload.head)
    return envelope_response(result)


@router.post("/xml/get")
async def xml_get(request: Request, runtime: Runtime = Depends(get_runtime)) -> JSONResponse:
    try:
        payload = await _xml_payload(request)
    except BillBusError as exc:
        return envelope_response(BillResult.failure(str(exc), code=exc.code))
    _log_request("xml", payload)
    result = await _fetch(runtime, payload)
    result.xml_data = render_result_xml(result)
    return envelope_response(result)


@router.post("/xml/set")
async def xml_set(request: Request, runtime: Runtime = Depends(get_runtime)) -> JSONResponse:
    try:
        payload = await _xml_payload(request)
    except BillBusError as exc:
        return envelope_response(BillResult.failure(str(exc), code=exc.code))
    _log_request("xml", payload)
    return envelope_response(await _write(runtime, payload))
