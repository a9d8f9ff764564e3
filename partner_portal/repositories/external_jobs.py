from __future__ import annotations

from collections.abc import Collection
from datetime import date, datetime
from typing import Any

from partner_portal.db.postgres import PostgresTxRunner
from partner_portal.models import REQUEST_MODE_PARTNER_PORTAL, ExternalJob, OrderRef, PartnerRequestState
from partner_portal.repositories._sql import row_to_dict, validate_identifier

JOB_COLUMNS = (
    "id",
    "tenant_id",
    "order_id",
    "partner_id",
    "partner_name",
    "partner_email",
    "partner_request_comment",
    "external_order_number",
    "due_date",
    "status",
    "request_mode",
    "partner_request_sender_name",
    "partner_request_sender_email",
    "partner_request_sender_phone",
    "partner_request_sent_at",
    "partner_request_token_hash",
    "partner_request_token_expires_at",
    "partner_request_viewed_at",
    "partner_response_submitted_at",
    "partner_response_order_number",
    "partner_response_due_date",
    "partner_response_note",
)


def _state_columns(state: PartnerRequestState, *, include_status: bool) -> dict[str, Any]:
    columns = {
        "request_mode": state.request_mode,
        "partner_email": state.partner_email,
        "partner_request_sender_name": state.sender_name,
        "partner_request_sender_email": state.sender_email,
        "partner_request_sender_phone": state.sender_phone,
        "partner_request_sent_at": state.sent_at,
        "partner_request_token_hash": state.token_hash,
        "partner_request_token_expires_at": state.token_expires_at,
    }
    if include_status:
        columns["status"] = state.status
    return columns


def _response_columns(
    *,
    submitted_at: datetime,
    order_number: str,
    completion_date: date,
    note: str | None,
) -> dict[str, Any]:
    return {
        "partner_response_submitted_at": submitted_at,
        "partner_response_order_number": order_number,
        "partner_response_due_date": completion_date,
        "partner_response_note": note,
        "request_mode": REQUEST_MODE_PARTNER_PORTAL,
    }


class InMemoryExternalJobsRepository:
    def __init__(self, jobs: dict[str, dict[str, Any]], orders: dict[str, dict[str, Any]]) -> None:
        self._jobs = jobs
        self._orders = orders

    def _to_job(self, row: dict[str, Any]) -> ExternalJob:
        order_row = self._orders.get(str(row.get("order_id") or ""))
        order = None
        if order_row is not None:
            order = OrderRef(
                order_number=order_row.get("order_number"),
                customer_name=order_row.get("customer_name"),
            )
        return ExternalJob.from_row(row, order=order)

    def get_for_tenant(self, *, tenant_id: str, job_id: str) -> ExternalJob | None:
        row = self._jobs.get(job_id)
        if row is None or row.get("tenant_id") != tenant_id:
            return None
        return self._to_job(row)

    def get_by_token_hash(self, *, token_hash: str) -> ExternalJob | None:
        for row in self._jobs.values():
            if row.get("partner_request_token_hash") == token_hash:
                return self._to_job(row)
        return None

    def write_partner_request(
        self,
        *,
        tenant_id: str,
        job_id: str,
        state: PartnerRequestState,
        include_status: bool = True,
    ) -> None:
        row = self._row_for_update(tenant_id=tenant_id, job_id=job_id)
        row.update(_state_columns(state, include_status=include_status))

    def transition_status(
        self,
        *,
        tenant_id: str,
        job_id: str,
        from_statuses: Collection[str],
        to_status: str,
    ) -> bool:
        row = self._row_for_update(tenant_id=tenant_id, job_id=job_id)
        if row.get("status") not in from_statuses:
            return False
        row["status"] = to_status
        return True

    def mark_viewed(self, *, tenant_id: str, job_id: str, viewed_at: datetime) -> bool:
        row = self._row_for_update(tenant_id=tenant_id, job_id=job_id)
        if row.get("partner_request_viewed_at"):
            return False
        row["partner_request_viewed_at"] = viewed_at
        return True

    def record_partner_response(
        self,
        *,
        tenant_id: str,
        job_id: str,
        submitted_at: datetime,
        order_number: str,
        completion_date: date,
        note: str | None,
    ) -> None:
        row = self._row_for_update(tenant_id=tenant_id, job_id=job_id)
        row.update(
            _response_columns(
                submitted_at=submitted_at,
                order_number=order_number,
                completion_date=completion_date,
                note=note,
            )
        )

    def _row_for_update(self, *, tenant_id: str, job_id: str) -> dict[str, Any]:
        row = self._jobs.get(job_id)
        if row is None or row.get("tenant_id") != tenant_id:
            raise LookupError(f"external job not found: {job_id}")
        return row


class PostgresExternalJobsRepository:
    """External jobs on postgres; every statement is scoped by tenant_id except the token lookup."""

    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        table_name: str = "external_jobs",
        orders_table_name: str = "orders",
    ) -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)
        self._orders_table_name = validate_identifier(orders_table_name)

    def _select_sql(self, where: str) -> str:
        columns = ", ".join(f"j.{name}" for name in JOB_COLUMNS)
        return f"""
            SELECT {columns}, o.order_number, o.customer_name
            FROM {self._table_name} j
            LEFT JOIN {self._orders_table_name} o ON o.id = j.order_id
            WHERE {where}
            LIMIT 1
        """

    @staticmethod
    def _to_job(row: Any) -> ExternalJob | None:
        data = row_to_dict(JOB_COLUMNS + ("order_number", "customer_name"), row)
        if data is None:
            return None
        order = None
        if data.get("order_id") is not None:
            order = OrderRef(order_number=data.pop("order_number"), customer_name=data.pop("customer_name"))
        return ExternalJob.from_row(data, order=order)

    def get_for_tenant(self, *, tenant_id: str, job_id: str) -> ExternalJob | None:
        sql = self._select_sql("j.tenant_id = %s AND j.id = %s")

        def _op(conn: Any) -> ExternalJob | None:
            with conn.cursor() as cur:
                cur.execute(sql, (tenant_id, job_id))
                return self._to_job(cur.fetchone())

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)

    def get_by_token_hash(self, *, token_hash: str) -> ExternalJob | None:
        sql = self._select_sql("j.partner_request_token_hash = %s")

        def _op(conn: Any) -> ExternalJob | None:
            with conn.cursor() as cur:
                cur.execute(sql, (token_hash,))
                return self._to_job(cur.fetchone())

        return self._tx_runner.run_in_tx(tenant_id=None, fn=_op)

    def _update(self, *, tenant_id: str, job_id: str, columns: dict[str, Any], where: str = "", params: tuple = ()) -> bool:
        assignments = ", ".join(f"{validate_identifier(name)} = %s" for name in columns)
        sql = f"""
            UPDATE {self._table_name}
            SET {assignments}, updated_at = now()
            WHERE tenant_id = %s AND id = %s {where}
        """

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (*columns.values(), tenant_id, job_id, *params))
                return cur.rowcount > 0

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)

    def write_partner_request(
        self,
        *,
        tenant_id: str,
        job_id: str,
        state: PartnerRequestState,
        include_status: bool = True,
    ) -> None:
        """Write the partner request columns; status only when restoring a snapshot."""
        columns = _state_columns(state, include_status=include_status)
        if not self._update(tenant_id=tenant_id, job_id=job_id, columns=columns):
            raise LookupError(f"external job not found: {job_id}")

    def transition_status(
        self,
        *,
        tenant_id: str,
        job_id: str,
        from_statuses: Collection[str],
        to_status: str,
    ) -> bool:
        # compare-and-swap: concurrent callers cannot both win the same edge
        return self._update(
            tenant_id=tenant_id,
            job_id=job_id,
            columns={"status": to_status},
            where="AND status = ANY(%s)",
            params=(list(from_statuses),),
        )

    def mark_viewed(self, *, tenant_id: str, job_id: str, viewed_at: datetime) -> bool:
        return self._update(
            tenant_id=tenant_id,
            job_id=job_id,
            columns={"partner_request_viewed_at": viewed_at},
            where="AND partner_request_viewed_at IS NULL",
        )

    def record_partner_response(
        self,
        *,
        tenant_id: str,
        job_id: str,
        submitted_at: datetime,
        order_number: str,
        completion_date: date,
        note: str | None,
    ) -> None:
        columns = _response_columns(
            submitted_at=submitted_at,
            order_number=order_number,
            completion_date=completion_date,
            note=note,
        )
        if not self._update(tenant_id=tenant_id, job_id=job_id, columns=columns):
            raise LookupError(f"external job not found: {job_id}")
