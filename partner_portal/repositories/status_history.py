from __future__ import annotations

from dataclasses import asdict
from typing import Any

from partner_portal.db.postgres import PostgresTxRunner
from partner_portal.models import StatusHistoryEntry
from partner_portal.repositories._sql import validate_identifier


class InMemoryStatusHistoryRepository:
    def __init__(self, entries: list[dict[str, Any]]) -> None:
        self._entries = entries

    def append(self, *, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        self._entries.append(asdict(entry))
        return entry


class PostgresStatusHistoryRepository:
    """Append-only; rows are never updated or deleted from here."""

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "external_job_status_history") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    def append(self, *, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        sql = f"""
            INSERT INTO {self._table_name} (
                tenant_id, external_job_id, status, changed_by_name, changed_by_role, changed_at
            ) VALUES (%s, %s, %s, %s, %s, %s)
        """

        def _op(conn: Any) -> StatusHistoryEntry:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        entry.tenant_id,
                        entry.external_job_id,
                        entry.status,
                        entry.changed_by_name,
                        entry.changed_by_role,
                        entry.changed_at,
                    ),
                )
            return entry

        return self._tx_runner.run_in_tx(tenant_id=entry.tenant_id, fn=_op)
