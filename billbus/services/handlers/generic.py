from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from billbus.core.errors import ConfigNotFoundError, TransactionFailureError
from billbus.domain.config import TEMPLATE_AFTER_SAVE, TEMPLATE_SAVE_BODY, TEMPLATE_SAVE_HEAD
from billbus.domain.envelope import BillRequest, BillResult
from billbus.services.database import AccountTransaction, Row
from billbus.services.handlers.base import BillHandler, db_error_message
from billbus.services.sql_templates import lookup_field, normalize_item_value, stringify


logger = logging.getLogger(__name__)

HEAD_ID = "iId"
HEAD_CODE = "cCode"
HEAD_SUB_ID = "iIds"
ROW_NO = "iRowNo"
HEAD_PREFIX = "m_"


class GenericBillHandler(BillHandler):
    """Transactional head/body write driven by the SaveHead, SaveBody and AfterSave templates."""

    async def persist(self, request: BillRequest) -> BillResult:
        save_head = self.config.template(TEMPLATE_SAVE_HEAD)
        if not save_head:
            raise ConfigNotFoundError(f"no SaveHead template configured for {self.account_id}/{self.document_type}")

        database = await self.context.gateway.for_account(self.account_id)
        try:
            async with database.transaction() as tx:
                head_row = await self._save_head(tx, save_head, request)
                await self._save_body(tx, head_row, request.body)
                after_save = self.config.template(TEMPLATE_AFTER_SAVE)
                if after_save:
                    await tx.execute(after_save, {HEAD_ID: lookup_field(head_row, HEAD_ID)})
        except SQLAlchemyError as exc:
            # The transaction context has already rolled back.
            raise TransactionFailureError(db_error_message(exc)) from exc

        new_id = stringify(lookup_field(head_row, HEAD_ID)).strip()
        new_code = stringify(lookup_field(head_row, HEAD_CODE)).strip()
        logger.info(
            "bill_written account_id=%s document_type=%s new_id=%s rows=%s",
            self.account_id,
            self.document_type,
            new_id,
            len(request.body),
        )
        result = BillResult(desc=new_code)
        return result.set_success(new_bill_id=new_id, new_bill_code=new_code)

    async def _save_head(self, tx: AccountTransaction, statements: list[str], request: BillRequest) -> Row:
        values: dict[str, Any] = dict(request.head)
        values["cMaker"] = self.operator(request)
        values["iRows"] = len(request.body)
        rows = await tx.execute(statements, values)
        if not rows:
            raise TransactionFailureError("SaveHead returned no row with the new document identity")
        return rows[0]

    async def _save_body(self, tx: AccountTransaction, head_row: Row, items: list[dict[str, Any]]) -> None:
        save_body = self.config.template(TEMPLATE_SAVE_BODY)
        if not save_body or not items:
            return
        head_id = lookup_field(head_row, HEAD_ID)
        # Sub-ids continue from the largest one already in the body table.
        sub_id = int(lookup_field(head_row, HEAD_SUB_ID) or 0)
        head_values = {f"{HEAD_PREFIX}{column}": value for column, value in head_row.items()}
        for index, item in enumerate(items, start=1):
            sub_id += 1
            values: dict[str, Any] = {str(key): normalize_item_value(value) for key, value in item.items()}
            values.update(head_values)
            row_no = lookup_field(item, ROW_NO)
            values[HEAD_ID] = head_id
            values[HEAD_SUB_ID] = sub_id
            values[ROW_NO] = row_no if normalize_item_value(row_no) is not None else index
            await tx.execute(save_body, values)
