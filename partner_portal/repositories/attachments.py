from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from partner_portal.db.postgres import PostgresTxRunner
from partner_portal.models import Attachment
from partner_portal.repositories._sql import row_to_dict, validate_identifier

ATTACHMENT_COLUMNS = (
    "id",
    "tenant_id",
    "external_job_id",
    "name",
    "url",
    "size",
    "mime_type",
    "category",
    "added_by_name",
    "added_by_role",
    "created_at",
)


class InMemoryAttachmentsRepository:
    def __init__(self, attachments: list[dict[str, Any]]) -> None:
        self._attachments = attachments

    def list_for_job(self, *, tenant_id: str, job_id: str) -> list[Attachment]:
        rows = [
            row
            for row in self._attachments
            if row.get("tenant_id") == tenant_id and row.get("external_job_id") == job_id
        ]
        rows.sort(key=lambda row: str(row.get("created_at") or ""))
        return [Attachment.from_row(row) for row in rows]

    def add(
        self,
        *,
        tenant_id: str,
        job_id: str,
        name: str,
        path: str,
        size: int,
        mime_type: str,
        category: str,
        added_by_name: str,
        added_by_role: str,
        created_at: datetime,
    ) -> Attachment:
        row = {
            "id": f"att_{uuid.uuid4().hex[:12]}",
            "tenant_id": tenant_id,
            "external_job_id": job_id,
            "name": name,
            "url": path,
            "size": size,
            "mime_type": mime_type,
            "category": category,
            "added_by_name": added_by_name,
            "added_by_role": added_by_role,
            "created_at": created_at,
        }
        self._attachments.append(row)
        return Attachment.from_row(row)


class PostgresAttachmentsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "external_job_attachments") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    def list_for_job(self, *, tenant_id: str, job_id: str) -> list[Attachment]:
        sql = f"""
            SELECT {", ".join(ATTACHMENT_COLUMNS)}
            FROM {self._table_name}
            WHERE tenant_id = %s AND external_job_id = %s
            ORDER BY created_at ASC
        """

        def _op(conn: Any) -> list[Attachment]:
            with conn.cursor() as cur:
                cur.execute(sql, (tenant_id, job_id))
                rows = cur.fetchall() or []
            return [Attachment.from_row(row_to_dict(ATTACHMENT_COLUMNS, row)) for row in rows]

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)

    def add(
        self,
        *,
        tenant_id: str,
        job_id: str,
        name: str,
        path: str,
        size: int,
        mime_type: str,
        category: str,
        added_by_name: str,
        added_by_role: str,
        created_at: datetime,
    ) -> Attachment:
        sql = f"""
            INSERT INTO {self._table_name} (
                tenant_id, external_job_id, name, url, size, mime_type, category,
                added_by_name, added_by_role, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {", ".join(ATTACHMENT_COLUMNS)}
        """

        def _op(conn: Any) -> Attachment:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        tenant_id,
                        job_id,
                        name,
                        path,
                        size,
                        mime_type,
                        category,
                        added_by_name,
                        added_by_role,
                        created_at,
                    ),
                )
                row = cur.fetchone()
            return Attachment.from_row(row_to_dict(ATTACHMENT_COLUMNS, row) or {})

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)
