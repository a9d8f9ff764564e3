from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from partner_portal.errors import ApiError
from partner_portal.models import ActorProfile, TenantSubscription
from partner_portal.security import JwtSecurityConfig, parse_and_validate_bearer_token

logger = logging.getLogger(__name__)

DEFAULT_PERMISSION_ROLES: dict[str, tuple[str, ...]] = {
    "dashboard.view": ("Admin",),
    "settings.view": ("Admin",),
    "settings.manage": ("Admin",),
    "production.view": ("Admin", "Production manager", "Production"),
    "production.operator.view": ("Admin", "Production manager", "Production worker", "Production"),
    "orders.manage": ("Admin", "Sales"),
}

ELEVATED_ROLES = frozenset({"Owner", "Admin"})

# Any one of these grants dispatch; this is OR, not AND.
DISPATCH_PERMISSIONS = ("orders.manage", "production.view", "production.operator.view")
DISPATCH_EXTRA_ROLES = frozenset({"Engineering"})

CAPABILITY_SEND_TO_PARTNER = "external_jobs.send_to_partner"


@dataclass(frozen=True)
class ActorContext:
    user_id: str
    email: str | None
    profile: ActorProfile
    tenant_id: str

    @property
    def display_name(self) -> str:
        return self.profile.full_name or self.email or "User"


def resolve_allowed_roles(directory, *, tenant_id: str, permission: str) -> tuple[str, ...]:
    fallback = DEFAULT_PERMISSION_ROLES.get(permission, ())
    roles = directory.get_allowed_roles(tenant_id=tenant_id, permission=permission)
    if not roles:
        return fallback
    return tuple(roles)


def actor_has_permission(profile: ActorProfile, allowed_roles: Sequence[str]) -> bool:
    if not profile.tenant_id:
        return False
    if profile.is_admin or profile.is_owner or profile.role in ELEVATED_ROLES:
        return True
    if not profile.role:
        return False
    return profile.role in allowed_roles


def has_tenant_capability(subscription: TenantSubscription | None, capability: str) -> bool:
    effective = subscription or TenantSubscription()
    if capability == CAPABILITY_SEND_TO_PARTNER:
        return effective.plan_code == "pro" and effective.status in {"active", "trial"}
    return False


def can_send_external_request(directory, profile: ActorProfile) -> bool:
    if profile.role in DISPATCH_EXTRA_ROLES and profile.tenant_id:
        return True
    for permission in DISPATCH_PERMISSIONS:
        allowed = resolve_allowed_roles(directory, tenant_id=profile.tenant_id or "", permission=permission)
        if actor_has_permission(profile, allowed):
            return True
    return False


def authorize_dispatch(*, directory, authorization: str | None, security_cfg: JwtSecurityConfig) -> ActorContext:
    auth_ctx = parse_and_validate_bearer_token(authorization=authorization, cfg=security_cfg)
    profile = directory.get_profile(user_id=auth_ctx.subject)
    if profile is None or not profile.tenant_id:
        raise ApiError(
            code="TENANT_NOT_CONFIGURED",
            message="User tenant is not configured.",
            error_class="security_sensitive",
            retryable=False,
            http_status=403,
        )
    if not can_send_external_request(directory, profile):
        logger.info("dispatch_denied user=%s tenant=%s role=%s", profile.id, profile.tenant_id, profile.role)
        raise ApiError(
            code="PERMISSION_DENIED",
            message="Missing permission: external_jobs.send",
            error_class="security_sensitive",
            retryable=False,
            http_status=403,
        )
    subscription = directory.get_subscription(tenant_id=profile.tenant_id)
    if not has_tenant_capability(subscription, CAPABILITY_SEND_TO_PARTNER):
        raise ApiError(
            code="FEATURE_NOT_AVAILABLE",
            message="feature_not_available",
            error_class="business_rule",
            retryable=False,
            http_status=403,
        )
    return ActorContext(
        user_id=auth_ctx.subject,
        email=auth_ctx.email,
        profile=profile,
        tenant_id=profile.tenant_id,
    )
