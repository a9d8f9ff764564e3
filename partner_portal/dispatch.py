"""Staff-side dispatch of an external job request to its partner.

There is no transaction spanning the record store and the email provider, so
the job columns touched here are snapshotted first and written back if any
step after that write fails, email delivery included. The write-back is
idempotent: repeating it leaves the same columns in place.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime

from partner_portal.access import ActorContext
from partner_portal.errors import ApiError, EmailDeliveryError, ObjectStorageError
from partner_portal.models import REQUEST_MODE_PARTNER_PORTAL, Attachment, ExternalJob, PartnerRequestState, StatusHistoryEntry
from partner_portal.notifications import SignedAttachment, build_dispatch_email, resolve_sender
from partner_portal.services import PortalServices
from partner_portal.status_machine import DISPATCH_TRANSITION
from partner_portal.tokens import hash_token, issue_token, token_expiry

logger = logging.getLogger(__name__)

MAX_SIGNING_WORKERS = 8
DEFAULT_ACTOR_ROLE = "Sales"


@dataclass(frozen=True)
class DispatchResult:
    expires_at: datetime
    status_advanced: bool


def secure_link(origin: str, token: str) -> str:
    return f"{origin.rstrip('/')}/external-jobs/respond/{token}"


def sign_attachments(
    services: PortalServices,
    attachments: Sequence[Attachment],
    *,
    expires_in: int,
) -> list[SignedAttachment]:
    """Sign attachment paths concurrently; output order follows input order."""

    def _sign(attachment: Attachment) -> SignedAttachment | None:
        if not attachment.path:
            return None
        try:
            url = services.storage.create_signed_url(
                bucket=services.config.attachments_bucket,
                path=attachment.path,
                expires_in=expires_in,
            )
        except ObjectStorageError as exc:
            logger.warning("attachment_sign_failed attachment=%s error=%s", attachment.id, exc)
            url = None
        return SignedAttachment(name=attachment.name, url=url, id=attachment.id)

    if not attachments:
        return []
    with ThreadPoolExecutor(max_workers=min(MAX_SIGNING_WORKERS, len(attachments))) as pool:
        signed = list(pool.map(_sign, attachments))
    return [item for item in signed if item is not None]


def _resolve_partner_email(services: PortalServices, job: ExternalJob) -> str:
    if job.partner_email:
        return job.partner_email
    if job.partner_id:
        email = services.directory.get_partner_email(tenant_id=job.tenant_id, partner_id=job.partner_id)
        if email:
            return email
    raise ApiError(
        code="PARTNER_EMAIL_MISSING",
        message="Partner email is missing.",
        error_class="validation",
        retryable=False,
        http_status=400,
    )


def restore_partner_request(services: PortalServices, job: ExternalJob, snapshot: PartnerRequestState) -> bool:
    try:
        services.jobs.write_partner_request(tenant_id=job.tenant_id, job_id=job.id, state=snapshot)
    except Exception:
        logger.exception("dispatch_rollback_failed job=%s tenant=%s", job.id, job.tenant_id)
        return False
    logger.info("dispatch_rolled_back job=%s tenant=%s", job.id, job.tenant_id)
    return True


def dispatch_partner_request(
    services: PortalServices,
    *,
    actor: ActorContext,
    external_job_id: str,
    origin: str,
) -> DispatchResult:
    job = services.jobs.get_for_tenant(tenant_id=actor.tenant_id, job_id=external_job_id)
    if job is None:
        raise ApiError(
            code="EXTERNAL_JOB_NOT_FOUND",
            message="External job not found.",
            error_class="validation",
            retryable=False,
            http_status=404,
        )
    partner_email = _resolve_partner_email(services, job)
    tenant = services.directory.get_tenant(tenant_id=actor.tenant_id)

    now = services.clock()
    token = issue_token()
    expires_at = token_expiry(now, services.config.token_ttl_days)
    snapshot = job.partner_request_state()
    next_state = replace(
        snapshot,
        request_mode=REQUEST_MODE_PARTNER_PORTAL,
        partner_email=partner_email,
        sender_name=actor.display_name,
        sender_email=actor.email,
        sender_phone=actor.profile.phone,
        sent_at=now,
        token_hash=hash_token(token),
        token_expires_at=expires_at,
    )
    try:
        services.jobs.write_partner_request(
            tenant_id=job.tenant_id,
            job_id=job.id,
            state=next_state,
            include_status=False,
        )
        advanced = False
        if DISPATCH_TRANSITION.applies_to(job.status):
            advanced = services.jobs.transition_status(
                tenant_id=job.tenant_id,
                job_id=job.id,
                from_statuses=DISPATCH_TRANSITION.from_statuses,
                to_status=DISPATCH_TRANSITION.to_status,
            )
    except Exception as exc:
        logger.exception("dispatch_persist_failed job=%s tenant=%s", job.id, job.tenant_id)
        restore_partner_request(services, job, snapshot)
        raise ApiError(
            code="DISPATCH_PERSIST_FAILED",
            message="Failed to send to partner.",
            error_class="transient",
            retryable=True,
            http_status=500,
        ) from exc

    try:
        attachments = services.attachments.list_for_job(tenant_id=job.tenant_id, job_id=job.id)
        signed = sign_attachments(
            services,
            attachments,
            expires_in=services.config.dispatch_attachment_url_ttl_s,
        )
        sender = resolve_sender(
            tenant,
            actor_name=actor.display_name,
            actor_email=actor.email,
            brand_name=services.config.brand_name,
        )
        message = build_dispatch_email(
            job=job,
            to=partner_email,
            secure_link=secure_link(origin, token),
            expires_at=expires_at,
            attachments=signed,
            sender=sender,
            tenant=tenant,
            brand_name=services.config.brand_name,
        )
        services.mailer.send(message)
    except EmailDeliveryError as exc:
        logger.warning("dispatch_email_failed job=%s tenant=%s error=%s", job.id, job.tenant_id, exc)
        restore_partner_request(services, job, snapshot)
        raise ApiError(
            code="EMAIL_DELIVERY_FAILED",
            message=str(exc) or "Failed to send email.",
            error_class="upstream",
            retryable=True,
            http_status=500,
        ) from exc
    except Exception as exc:
        logger.exception("dispatch_send_failed job=%s tenant=%s", job.id, job.tenant_id)
        restore_partner_request(services, job, snapshot)
        raise ApiError(
            code="DISPATCH_SEND_FAILED",
            message="Failed to send to partner.",
            error_class="transient",
            retryable=True,
            http_status=500,
        ) from exc

    if advanced:
        services.status_history.append(
            entry=StatusHistoryEntry(
                tenant_id=job.tenant_id,
                external_job_id=job.id,
                status=DISPATCH_TRANSITION.to_status,
                changed_by_name=actor.display_name,
                changed_by_role=actor.profile.role or DEFAULT_ACTOR_ROLE,
                changed_at=services.clock(),
            )
        )
    logger.info(
        "dispatch_sent job=%s tenant=%s status_advanced=%s expires_at=%s",
        job.id,
        job.tenant_id,
        advanced,
        expires_at.isoformat(),
    )
    return DispatchResult(expires_at=expires_at, status_advanced=advanced)
