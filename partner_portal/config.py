from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _env_int(env: Mapping[str, str], name: str, *, default: int, minimum: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


@dataclass(frozen=True)
class PortalConfig:
    store_backend: str
    postgres_dsn: str
    public_origin: str
    token_ttl_days: int
    dispatch_attachment_url_ttl_s: int
    portal_signed_url_ttl_s: int
    attachments_bucket: str
    tenant_logo_bucket: str
    require_attachment: bool
    brand_name: str

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PortalConfig":
        env = os.environ if environ is None else environ
        return cls(
            store_backend=env.get("PORTAL_STORE_BACKEND", "memory").strip().lower() or "memory",
            postgres_dsn=env.get("POSTGRES_DSN", "").strip(),
            public_origin=env.get("PORTAL_PUBLIC_ORIGIN", "").strip().rstrip("/"),
            token_ttl_days=_env_int(env, "PARTNER_TOKEN_TTL_DAYS", default=7, minimum=1),
            dispatch_attachment_url_ttl_s=_env_int(
                env,
                "DISPATCH_ATTACHMENT_URL_TTL_S",
                default=7 * 24 * 60 * 60,
                minimum=60,
            ),
            portal_signed_url_ttl_s=_env_int(env, "PORTAL_SIGNED_URL_TTL_S", default=60 * 60, minimum=60),
            attachments_bucket=env.get("ATTACHMENTS_BUCKET", "order-attachments").strip() or "order-attachments",
            tenant_logo_bucket=env.get("TENANT_LOGO_BUCKET", "tenant-logos").strip() or "tenant-logos",
            require_attachment=_env_bool(env, "PORTAL_REQUIRE_ATTACHMENT", False),
            brand_name=env.get("PORTAL_BRAND_NAME", "PWS").strip() or "PWS",
        )
