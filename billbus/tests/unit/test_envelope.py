from __future__ import annotations

from datetime import datetime

from billbus.domain.envelope import BillRequest, BillResult


def test_result_wire_shape_uses_camel_case_names() -> None:
    result = BillResult(time=datetime(2026, 3, 4, 5, 6, 7))
    result.set_success(new_bill_id="12", new_bill_code="T1-12", csrc_sys_id="EXT-1")
    wire = result.to_wire()
    assert wire["result"] == "OK"
    assert wire["code"] == "0"
    assert wire["newBillId"] == "12"
    assert wire["newBillCode"] == "T1-12"
    assert wire["cSrcSysId"] == "EXT-1"
    assert wire["xmlData"] == ""
    assert wire["time"] == "2026-03-04 05:06:07"


def test_failure_marks_result_ng() -> None:
    result = BillResult.failure("boom")
    assert not result.ok
    assert result.result == "NG"
    assert result.code == "1"
    assert result.desc == "boom"


def test_external_source_id_reads_either_header_key() -> None:
    assert BillRequest(head={"cSrcID": " A-1 "}).external_source_id == "A-1"
    assert BillRequest(head={"CSRCSYSID": "B-2"}).external_source_id == "B-2"
    assert BillRequest(head={"cSrcID": "  "}).external_source_id is None
    assert BillRequest(head={}).external_source_id is None


def test_request_coerces_numeric_account_and_keeps_payload_small() -> None:
    request = BillRequest(accno=1, billtype="T1", head={"x": 1}, task_guid="g")
    assert request.accno == "1"
    assert '"task_guid"' not in request.payload_json()
    assert '"head"' in request.payload_json()
