from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest
from sqlalchemy import select

from billbus.domain.envelope import BillRequest
from billbus.domain.models import AuditLogEntry
from billbus.persistence.db import SessionLocal
from billbus.services.telemetry import external_latency_by_integration
from billbus.tests.utils.bus import PEER_URL, BusFixture, create_bus


async def _local_document(bus: BusFixture) -> str:
    # Write a local T1 document for the forwarder to read back.
    handler = bus.runtime.resolver.resolve("001", "T1")
    result = await handler.write(
        BillRequest(billtype="T1", head={"cMaker": "u1"}, body=[{"iRowNo": 1, "qty": 5}, {"iRowNo": 2, "qty": 3}])
    )
    assert result.ok
    return result.new_bill_id


async def _forward(bus: BusFixture, record_id: str):
    handler = bus.runtime.resolver.resolve("001", "F1")
    return await handler.write(BillRequest(billtype="F1", head={"iId": record_id}))


@pytest.mark.asyncio
async def test_forward_relays_document_and_returns_remote_identity(tmp_path: Path) -> None:
    seen: list[httpx.Request] = []

    def peer(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, json={"result": "OK", "code": "0", "desc": "SO-77", "newBillId": "77", "newBillCode": "SO-77"}
        )

    bus = await create_bus(tmp_path, http_handler=peer)
    try:
        record_id = await _local_document(bus)
        result = await _forward(bus, record_id)
    finally:
        await bus.runtime.aclose()

    assert result.ok
    assert result.new_bill_id == "77"
    assert result.new_bill_code == "SO-77"

    assert len(seen) == 1
    assert str(seen[0].url) == PEER_URL
    assert seen[0].method == "POST"
    payload = json.loads(seen[0].content)
    assert payload["billtype"] == "SO"
    assert payload["accno"] == "002"
    assert payload["head"]["cCode"] == f"T1-{record_id}"
    assert payload["body"] == [{"iRowNo": "1", "qty": "5"}, {"iRowNo": "2", "qty": "3"}]

    async with SessionLocal() as session:
        entries = (
            await session.execute(select(AuditLogEntry).where(AuditLogEntry.document_type == "F1"))
        ).scalars().all()
    assert [entry.new_id for entry in entries] == ["77"]
    assert external_latency_by_integration(300)["forward"]["count"] == 1


@pytest.mark.asyncio
async def test_forward_surfaces_remote_rejection(tmp_path: Path) -> None:
    def peer(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"Result": "NG", "Desc": "unknown customer"})

    bus = await create_bus(tmp_path, http_handler=peer)
    try:
        record_id = await _local_document(bus)
        result = await _forward(bus, record_id)
    finally:
        await bus.runtime.aclose()

    assert result.result == "NG"
    assert result.desc == "remote rejected: unknown customer"


@pytest.mark.asyncio
async def test_forward_transport_failures_become_ng_results(tmp_path: Path) -> None:
    def peer(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("peer unreachable", request=request)

    bus = await create_bus(tmp_path, http_handler=peer)
    try:
        record_id = await _local_document(bus)
        result = await _forward(bus, record_id)
    finally:
        await bus.runtime.aclose()

    assert result.result == "NG"
    assert result.desc.startswith("call failed")
    assert external_latency_by_integration(300)["forward"]["failures"] == 1


@pytest.mark.asyncio
async def test_forward_treats_http_errors_as_call_failures(tmp_path: Path) -> None:
    def peer(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    bus = await create_bus(tmp_path, http_handler=peer)
    try:
        record_id = await _local_document(bus)
        result = await _forward(bus, record_id)
    finally:
        await bus.runtime.aclose()

    assert result.result == "NG"
    assert result.desc.startswith("call failed")


@pytest.mark.asyncio
async def test_forward_missing_record_never_calls_peer(tmp_path: Path) -> None:
    calls: list[httpx.Request] = []

    def peer(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"result": "OK"})

    bus = await create_bus(tmp_path, http_handler=peer)
    try:
        result = await _forward(bus, "999")
    finally:
        await bus.runtime.aclose()

    assert result.result == "NG"
    assert "no data" in result.desc
    assert calls == []
