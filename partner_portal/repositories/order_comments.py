from __future__ import annotations

from dataclasses import asdict
from typing import Any

from partner_portal.db.postgres import PostgresTxRunner
from partner_portal.models import OrderComment
from partner_portal.repositories._sql import validate_identifier


class InMemoryOrderCommentsRepository:
    def __init__(self, comments: list[dict[str, Any]]) -> None:
        self._comments = comments

    def append(self, *, comment: OrderComment) -> OrderComment:
        self._comments.append(asdict(comment))
        return comment


class PostgresOrderCommentsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "order_comments") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    def append(self, *, comment: OrderComment) -> OrderComment:
        sql = f"""
            INSERT INTO {self._table_name} (
                tenant_id, order_id, message, author_name, author_role, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s)
        """

        def _op(conn: Any) -> OrderComment:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        comment.tenant_id,
                        comment.order_id,
                        comment.message,
                        comment.author_name,
                        comment.author_role,
                        comment.created_at,
                    ),
                )
            return comment

        return self._tx_runner.run_in_tx(tenant_id=comment.tenant_id, fn=_op)
