from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from billbus.core.errors import ConfigNotFoundError, RemoteCallFailedError, RemoteRejectedError
from billbus.domain.config import TEMPLATE_FIND, TEMPLATE_FIND_BODY
from billbus.domain.envelope import RESULT_OK, BillRequest, BillResult
from billbus.services.handlers.base import BillHandler
from billbus.services.sql_templates import lookup_field, stringify, stringify_row
from billbus.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


class ForwardingBillHandler(BillHandler):
    """Reads one local record and relays it to a remote bus for another account and document type."""

    async def persist(self, request: BillRequest) -> BillResult:
        target = self.config.forward
        if target is None:
            raise ConfigNotFoundError(f"no forward target configured for {self.account_id}/{self.document_type}")
        document = await self._load_document(request)
        payload = {
            "billtype": target.document_type,
            "accno": target.account_id,
            **document,
        }
        envelope = await self._post(target.method, target.url, payload)

        desc = stringify(lookup_field(envelope, "desc"))
        if stringify(lookup_field(envelope, "result")).upper() != RESULT_OK:
            raise RemoteRejectedError(f"remote rejected: {desc}")
        result = BillResult(desc=desc)
        return result.set_success(
            new_bill_id=stringify(lookup_field(envelope, "newbillid")),
            new_bill_code=stringify(lookup_field(envelope, "newbillcode")),
        )

    async def _load_document(self, request: BillRequest) -> dict[str, Any]:
        record_id = request.source_record_id or stringify(lookup_field(request.head, "iId"))
        values: dict[str, Any] = {**request.head, "iId": record_id, "GUID": request.task_guid or ""}
        database = await self.context.gateway.for_account(self.account_id)
        head_rows = await database.fetch_all(self.config.template(TEMPLATE_FIND), values)
        if not head_rows:
            raise ConfigNotFoundError(f"no data for record {record_id}")
        document: dict[str, Any] = {"head": stringify_row(head_rows[0])}
        if self.config.has_template(TEMPLATE_FIND_BODY):
            lines = await database.fetch_all(self.config.template(TEMPLATE_FIND_BODY), values)
            document["body"] = [stringify_row(line) for line in lines]
        return document

    async def _post(self, method: str, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        started = time.monotonic()
        try:
            async with self.context.http_client() as client:
                response = await client.request(method.upper(), url, json=payload)
                response.raise_for_status()
                envelope = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            record_external_call(
                integration="forward", latency_ms=(time.monotonic() - started) * 1000.0, success=False
            )
            logger.warning("forward_call_failed url=%s", url, exc_info=exc)
            raise RemoteCallFailedError(f"call failed: {exc}") from exc
        record_external_call(integration="forward", latency_ms=(time.monotonic() - started) * 1000.0, success=True)
        if not isinstance(envelope, dict):
            raise RemoteCallFailedError("call failed: response is not a result envelope")
        return envelope
