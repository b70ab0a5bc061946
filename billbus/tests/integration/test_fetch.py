from __future__ import annotations

import pytest

from billbus.domain.envelope import BillRequest
from billbus.tests.utils.bus import BusFixture


async def _seed(bus: BusFixture) -> None:
    for maker in ("u1", "u2", "u1"):
        handler = bus.runtime.resolver.resolve("001", "T1")
        result = await handler.write(BillRequest(billtype="T1", head={"cMaker": maker}))
        assert result.ok


@pytest.mark.asyncio
async def test_fetch_returns_string_rows(bus: BusFixture) -> None:
    await _seed(bus)
    handler = bus.runtime.resolver.resolve("", "T1")
    result = await handler.fetch(BillRequest(billtype="T1"))
    assert result.ok
    assert len(result.data) == 3
    assert result.data[0] == {"iId": "1", "cCode": "T1-1", "cMaker": "u1", "iRows": "0"}


@pytest.mark.asyncio
async def test_fetch_applies_bound_filters(bus: BusFixture) -> None:
    await _seed(bus)
    handler = bus.runtime.resolver.resolve("", "T1")

    by_string = await handler.fetch(BillRequest(billtype="T1", where="cMaker = 'u1' AND iId > 1"))
    assert [row["iId"] for row in by_string.data] == ["3"]

    by_mapping = await handler.fetch(BillRequest(billtype="T1", where={"cMaker": "u2"}))
    assert [row["iId"] for row in by_mapping.data] == ["2"]


@pytest.mark.asyncio
async def test_fetch_rejects_injected_filters(bus: BusFixture) -> None:
    await _seed(bus)
    handler = bus.runtime.resolver.resolve("", "T1")
    result = await handler.fetch(BillRequest(billtype="T1", where="1=1; DELETE FROM bill_head"))
    assert result.result == "NG"
    rows = await bus.account_query("SELECT COUNT(*) AS n FROM bill_head")
    assert rows[0]["n"] == 3


@pytest.mark.asyncio
async def test_fetch_honors_token_requirement(bus: BusFixture) -> None:
    handler = bus.runtime.resolver.resolve("", "T2")
    rejected = await handler.fetch(BillRequest(billtype="T2"))
    assert rejected.desc == "invalid token"

    token = await bus.runtime.tokens.issue("u1")
    accepted = await handler.fetch(BillRequest(billtype="T2", token=token))
    assert accepted.ok
    assert accepted.data == []
