from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from partner_portal.db.postgres import PostgresTxRunner
from partner_portal.models import FieldDefinition, FieldValue
from partner_portal.repositories._sql import row_to_dict, validate_identifier

FIELD_COLUMNS = (
    "id",
    "tenant_id",
    "key",
    "label",
    "field_type",
    "scope",
    "is_required",
    "options",
    "unit",
    "sort_order",
    "is_active",
    "created_at",
)


class InMemoryJobFieldsRepository:
    def __init__(self, fields: list[dict[str, Any]], values: dict[tuple[str, str], dict[str, Any]]) -> None:
        self._fields = fields
        self._values = values

    def list_active(self, *, tenant_id: str) -> list[FieldDefinition]:
        return [
            FieldDefinition.from_row(row)
            for row in self._fields
            if row.get("tenant_id") == tenant_id and row.get("is_active", True)
        ]

    def get_values(self, *, tenant_id: str, job_id: str, field_ids: Sequence[str]) -> dict[str, Any]:
        wanted = set(field_ids)
        return {
            row["field_id"]: row.get("value")
            for (row_job_id, field_id), row in self._values.items()
            if row_job_id == job_id and field_id in wanted and row.get("tenant_id") == tenant_id
        }

    def upsert_values(self, *, tenant_id: str, values: Sequence[FieldValue]) -> int:
        for value in values:
            self._values[(value.external_job_id, value.field_id)] = {
                "tenant_id": tenant_id,
                "external_job_id": value.external_job_id,
                "field_id": value.field_id,
                "value": value.value,
            }
        return len(values)


class PostgresJobFieldsRepository:
    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        fields_table_name: str = "external_job_fields",
        values_table_name: str = "external_job_field_values",
    ) -> None:
        self._tx_runner = tx_runner
        self._fields_table_name = validate_identifier(fields_table_name)
        self._values_table_name = validate_identifier(values_table_name)

    def list_active(self, *, tenant_id: str) -> list[FieldDefinition]:
        sql = f"""
            SELECT {", ".join(FIELD_COLUMNS)}
            FROM {self._fields_table_name}
            WHERE tenant_id = %s AND is_active = true
            ORDER BY sort_order ASC, created_at ASC
        """

        def _op(conn: Any) -> list[FieldDefinition]:
            with conn.cursor() as cur:
                cur.execute(sql, (tenant_id,))
                rows = cur.fetchall() or []
            return [FieldDefinition.from_row(row_to_dict(FIELD_COLUMNS, row)) for row in rows]

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)

    def get_values(self, *, tenant_id: str, job_id: str, field_ids: Sequence[str]) -> dict[str, Any]:
        if not field_ids:
            return {}
        sql = f"""
            SELECT field_id, value
            FROM {self._values_table_name}
            WHERE tenant_id = %s AND external_job_id = %s AND field_id = ANY(%s)
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, (tenant_id, job_id, list(field_ids)))
                rows = cur.fetchall() or []
            return {str(row[0]): row[1] for row in rows}

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)

    def upsert_values(self, *, tenant_id: str, values: Sequence[FieldValue]) -> int:
        if not values:
            return 0
        sql = f"""
            INSERT INTO {self._values_table_name} (tenant_id, external_job_id, field_id, value)
            VALUES (%s, %s, %s, %s::jsonb)
            ON CONFLICT (external_job_id, field_id) DO UPDATE
            SET value = EXCLUDED.value,
                updated_at = now()
        """

        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                for value in values:
                    cur.execute(
                        sql,
                        (
                            tenant_id,
                            value.external_job_id,
                            value.field_id,
                            json.dumps(value.value, ensure_ascii=True),
                        ),
                    )
            return len(values)

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)
