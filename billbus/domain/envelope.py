from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer


RESULT_OK = "OK"
RESULT_NG = "NG"

# Header keys that may carry the caller's external-source id, in lookup order.
_SOURCE_ID_KEYS = ("cSrcID", "csrcsysid")


class BillRequest(BaseModel):
    """Internal shape of an inbound or task-originated document request."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    accno: str = ""
    billtype: str = ""
    token: str = ""
    where: str | dict[str, Any] | None = None
    head: dict[str, Any] = Field(default_factory=dict)
    body: list[dict[str, Any]] = Field(default_factory=list)
    # Populated by the task engine; identifies the source row being relayed.
    source_record_id: str | None = None
    op_tag: str | None = None
    task_guid: str | None = None

    @property
    def external_source_id(self) -> str | None:
        lowered = {str(key).lower(): value for key, value in self.head.items()}
        for key in _SOURCE_ID_KEYS:
            value = lowered.get(key.lower())
            if value is not None and str(value).strip():
                return str(value).strip()
        return None

    def payload_json(self) -> str:
        # Serialize the caller-facing document only; task bookkeeping stays out of the audit payload.
        return self.model_dump_json(include={"accno", "billtype", "where", "head", "body"})


class BillResult(BaseModel):
    """Generic result envelope returned for every fetch and write."""

    model_config = ConfigDict(populate_by_name=True)

    result: str = RESULT_OK
    code: str = "0"
    desc: str = ""
    data: list[dict[str, str]] = Field(default_factory=list)
    xml_data: str = Field(default="", alias="xmlData")
    new_bill_id: str = Field(default="", alias="newBillId")
    new_bill_code: str = Field(default="", alias="newBillCode")
    csrc_sys_id: str = Field(default="", alias="cSrcSysId")
    time: datetime = Field(default_factory=datetime.now)
    token: str = ""

    @field_serializer("time")
    def _format_time(self, value: datetime) -> str:
        return value.strftime("%Y-%m-%d %H:%M:%S")

    @property
    def ok(self) -> bool:
        return self.result == RESULT_OK

    def set_error(self, code: str, desc: str) -> BillResult:
        self.result = RESULT_NG
        self.code = code
        self.desc = desc
        return self

    def set_success(
        self,
        data: list[dict[str, str]] | None = None,
        *,
        new_bill_id: str = "",
        new_bill_code: str = "",
        csrc_sys_id: str = "",
    ) -> BillResult:
        self.result = RESULT_OK
        self.code = "0"
        self.data = data or []
        self.new_bill_id = new_bill_id
        self.new_bill_code = new_bill_code
        self.csrc_sys_id = csrc_sys_id
        return self

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def failure(cls, desc: str, *, code: str = "1") -> BillResult:
        return cls().set_error(code, desc)
