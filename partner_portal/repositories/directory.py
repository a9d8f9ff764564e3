"""Read-only lookups for profiles, tenants, subscriptions, RBAC overrides and partners."""

from __future__ import annotations

from typing import Any

from partner_portal.db.postgres import PostgresTxRunner
from partner_portal.models import ActorProfile, TenantSettings, TenantSubscription
from partner_portal.repositories._sql import row_to_dict

PROFILE_COLUMNS = ("id", "tenant_id", "full_name", "role", "phone", "is_admin", "is_owner")
TENANT_COLUMNS = (
    "id",
    "name",
    "legal_name",
    "billing_email",
    "address",
    "logo_url",
    "outbound_from_name",
    "outbound_from_email",
    "outbound_reply_to_email",
    "outbound_use_user_sender",
    "outbound_sender_verified",
    "external_request_email_subject_template",
    "external_request_email_html_template",
    "external_request_email_text_template",
)


class InMemoryDirectoryRepository:
    def __init__(
        self,
        *,
        profiles: dict[str, dict[str, Any]],
        tenants: dict[str, dict[str, Any]],
        subscriptions: dict[str, dict[str, Any]],
        role_permissions: dict[tuple[str, str], list[str]],
        partners: dict[str, dict[str, Any]],
    ) -> None:
        self._profiles = profiles
        self._tenants = tenants
        self._subscriptions = subscriptions
        self._role_permissions = role_permissions
        self._partners = partners

    def get_profile(self, *, user_id: str) -> ActorProfile | None:
        row = self._profiles.get(user_id)
        return ActorProfile.from_row(row) if row is not None else None

    def get_tenant(self, *, tenant_id: str) -> TenantSettings | None:
        row = self._tenants.get(tenant_id)
        return TenantSettings.from_row(row) if row is not None else None

    def get_subscription(self, *, tenant_id: str) -> TenantSubscription | None:
        row = self._subscriptions.get(tenant_id)
        return TenantSubscription.from_row(row) if row is not None else None

    def get_allowed_roles(self, *, tenant_id: str, permission: str) -> list[str] | None:
        roles = self._role_permissions.get((tenant_id, permission))
        return list(roles) if roles is not None else None

    def get_partner_email(self, *, tenant_id: str, partner_id: str) -> str | None:
        row = self._partners.get(partner_id)
        if row is None or row.get("tenant_id") != tenant_id:
            return None
        return (row.get("email") or "").strip() or None


class PostgresDirectoryRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner) -> None:
        self._tx_runner = tx_runner

    def _fetch_one(self, *, tenant_id: str | None, sql: str, params: tuple) -> Any:
        def _op(conn: Any) -> Any:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone()

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)

    def get_profile(self, *, user_id: str) -> ActorProfile | None:
        row = self._fetch_one(
            tenant_id=None,
            sql=f"SELECT {', '.join(PROFILE_COLUMNS)} FROM profiles WHERE id = %s LIMIT 1",
            params=(user_id,),
        )
        data = row_to_dict(PROFILE_COLUMNS, row)
        return ActorProfile.from_row(data) if data is not None else None

    def get_tenant(self, *, tenant_id: str) -> TenantSettings | None:
        row = self._fetch_one(
            tenant_id=tenant_id,
            sql=f"SELECT {', '.join(TENANT_COLUMNS)} FROM tenants WHERE id = %s LIMIT 1",
            params=(tenant_id,),
        )
        data = row_to_dict(TENANT_COLUMNS, row)
        return TenantSettings.from_row(data) if data is not None else None

    def get_subscription(self, *, tenant_id: str) -> TenantSubscription | None:
        row = self._fetch_one(
            tenant_id=tenant_id,
            sql="SELECT plan_code, status FROM tenant_subscriptions WHERE tenant_id = %s LIMIT 1",
            params=(tenant_id,),
        )
        data = row_to_dict(("plan_code", "status"), row)
        return TenantSubscription.from_row(data) if data is not None else None

    def get_allowed_roles(self, *, tenant_id: str, permission: str) -> list[str] | None:
        row = self._fetch_one(
            tenant_id=tenant_id,
            sql="SELECT allowed_roles FROM role_permissions WHERE tenant_id = %s AND permission = %s LIMIT 1",
            params=(tenant_id, permission),
        )
        if row is None or row[0] is None:
            return None
        return [str(x) for x in row[0]]

    def get_partner_email(self, *, tenant_id: str, partner_id: str) -> str | None:
        row = self._fetch_one(
            tenant_id=tenant_id,
            sql="SELECT email FROM partners WHERE id = %s AND tenant_id = %s LIMIT 1",
            params=(partner_id, tenant_id),
        )
        if row is None:
            return None
        return (row[0] or "").strip() or None
