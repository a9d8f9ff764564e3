"""Partner-side view and submission behind the secure link.

The partner has no account: possession of a live token is the only check.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from partner_portal.dispatch import sign_attachments
from partner_portal.errors import ApiError, EmailDeliveryError, ObjectStorageError, bad_request
from partner_portal.field_resolver import CONTEXT_PORTAL_RESPONSE, resolve_fields, validate_submission
from partner_portal.models import (
    ATTACHMENT_CATEGORY_PARTNER_RESPONSE,
    PARTNER_ROLE,
    ExternalJob,
    OrderComment,
    StatusHistoryEntry,
    SubmittedFile,
    TenantSettings,
)
from partner_portal.notifications import build_confirmation_email, format_date
from partner_portal.object_storage import DEFAULT_CONTENT_TYPE, storage_path_from_public_url
from partner_portal.services import PortalServices
from partner_portal.status_machine import SUBMISSION_TRANSITION
from partner_portal.tokens import NOT_FOUND_MESSAGE, hash_token, verify_token

logger = logging.getLogger(__name__)

MULTIPART_CONTENT_TYPE = "multipart/form-data"


@dataclass
class PartnerSubmission:
    content_type: str
    partner_order_number: str
    completion_date: str
    note: str
    files: list[SubmittedFile] = field(default_factory=list)
    field_inputs: dict[str, Any] = field(default_factory=dict)

    def get_raw(self, name: str) -> Any:
        return self.field_inputs.get(name)


def sanitize_file_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9._-]", "_", name)


def load_job_by_token(services: PortalServices, token: str) -> ExternalJob:
    if not token:
        raise bad_request("Token is required.")
    job = services.jobs.get_by_token_hash(token_hash=hash_token(token))
    if job is None:
        raise ApiError(
            code="PARTNER_REQUEST_NOT_FOUND",
            message=NOT_FOUND_MESSAGE,
            error_class="validation",
            retryable=False,
            http_status=404,
        )
    verify_token(
        token,
        job.partner_request_token_hash,
        job.partner_request_token_expires_at,
        now=services.clock(),
    )
    return job


def _company_logo_url(services: PortalServices, tenant: TenantSettings | None) -> str | None:
    if tenant is None or not tenant.logo_url:
        return None
    bucket = services.config.tenant_logo_bucket
    path = storage_path_from_public_url(tenant.logo_url, bucket)
    if not path:
        return tenant.logo_url
    try:
        return services.storage.create_signed_url(
            bucket=bucket,
            path=path,
            expires_in=services.config.portal_signed_url_ttl_s,
        )
    except ObjectStorageError as exc:
        logger.warning("tenant_logo_sign_failed tenant=%s error=%s", tenant.id, exc)
        return tenant.logo_url


def _portal_fields(services: PortalServices, job: ExternalJob):
    return resolve_fields(services.fields.list_active(tenant_id=job.tenant_id), CONTEXT_PORTAL_RESPONSE)


def build_response_view(services: PortalServices, token: str) -> dict[str, Any]:
    job = load_job_by_token(services, token)
    if job.partner_request_viewed_at is None:
        services.jobs.mark_viewed(tenant_id=job.tenant_id, job_id=job.id, viewed_at=services.clock())

    attachments = services.attachments.list_for_job(tenant_id=job.tenant_id, job_id=job.id)
    signed = sign_attachments(services, attachments, expires_in=services.config.portal_signed_url_ttl_s)

    fields = _portal_fields(services, job)
    values = services.fields.get_values(
        tenant_id=job.tenant_id,
        job_id=job.id,
        field_ids=[f.id for f in fields],
    )
    tenant = services.directory.get_tenant(tenant_id=job.tenant_id)

    return {
        "request": {
            "partnerName": job.partner_display_name,
            "orderNumber": job.order_number,
            "customerName": job.customer_name,
            "externalOrderNumber": job.external_order_number,
            "dueDate": job.due_date.isoformat() if job.due_date else None,
            "companyName": tenant.company_name if tenant else "",
            "companyLogoUrl": _company_logo_url(services, tenant),
            "companyBillingEmail": (tenant.billing_email if tenant else None) or "",
            "companyAddress": (tenant.address if tenant else None) or "",
            "senderName": job.partner_request_sender_name or "",
            "senderEmail": job.partner_request_sender_email or "",
            "senderPhone": job.partner_request_sender_phone or "",
        },
        "attachments": [
            {"id": item.id, "name": item.name, "url": item.url}
            for item in signed
            if item.url
        ],
        "fields": [
            {
                "id": f.id,
                "key": f.key,
                "label": f.label,
                "fieldType": f.field_type,
                "isRequired": f.is_required,
                "options": list(f.options),
                "unit": f.unit,
                "value": values.get(f.id),
            }
            for f in fields
        ],
    }


def _parse_completion_date(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise bad_request("Completion date must be a valid date.") from None


def _validate_base_fields(submission: PartnerSubmission) -> tuple[str, date, str | None]:
    if MULTIPART_CONTENT_TYPE not in submission.content_type.lower():
        raise bad_request("Use multipart/form-data.", code="UNSUPPORTED_CONTENT_TYPE")
    order_number = submission.partner_order_number.strip()
    if not order_number:
        raise bad_request("Partner order number is required.")
    completion_raw = submission.completion_date.strip()
    if not completion_raw:
        raise bad_request("Completion date is required.")
    completion_date = _parse_completion_date(completion_raw)
    note = submission.note.strip() or None
    return order_number, completion_date, note


def _single_file(services: PortalServices, files: Sequence[SubmittedFile]) -> SubmittedFile | None:
    present = [f for f in files if f.size > 0]
    if len(present) > 1:
        raise bad_request("Only one file can be attached.", code="TOO_MANY_FILES")
    if not present:
        if services.config.require_attachment:
            raise bad_request("Attachment is required.", code="ATTACHMENT_REQUIRED")
        return None
    return present[0]


def submit_partner_response(
    services: PortalServices,
    token: str,
    submission: PartnerSubmission,
) -> None:
    job = load_job_by_token(services, token)
    order_number, completion_date, note = _validate_base_fields(submission)
    field_values = validate_submission(
        _portal_fields(services, job),
        submission.get_raw,
        tenant_id=job.tenant_id,
        external_job_id=job.id,
    )
    upload = _single_file(services, submission.files)
    now = services.clock()
    partner_name = job.partner_display_name

    stored_path = None
    if upload is not None:
        mime_type = upload.content_type or DEFAULT_CONTENT_TYPE
        path = f"external-jobs/{job.id}/partner-response-{int(now.timestamp() * 1000)}-{sanitize_file_name(upload.filename)}"
        try:
            stored_path = services.storage.upload(
                bucket=services.config.attachments_bucket,
                path=path,
                content_bytes=upload.content,
                content_type=mime_type,
                upsert=True,
            )
        except ObjectStorageError as exc:
            logger.error("partner_upload_failed job=%s error=%s", job.id, exc)
            raise ApiError(
                code="STORAGE_UPLOAD_FAILED",
                message="Failed to store attachment.",
                error_class="upstream",
                retryable=True,
                http_status=500,
            ) from exc

    try:
        services.jobs.record_partner_response(
            tenant_id=job.tenant_id,
            job_id=job.id,
            submitted_at=now,
            order_number=order_number,
            completion_date=completion_date,
            note=note,
        )
    except Exception as exc:
        logger.exception("partner_response_persist_failed job=%s", job.id)
        raise ApiError(
            code="RESPONSE_PERSIST_FAILED",
            message="Failed to save response.",
            error_class="transient",
            retryable=True,
            http_status=500,
        ) from exc

    if SUBMISSION_TRANSITION.applies_to(job.status):
        advanced = services.jobs.transition_status(
            tenant_id=job.tenant_id,
            job_id=job.id,
            from_statuses=SUBMISSION_TRANSITION.from_statuses,
            to_status=SUBMISSION_TRANSITION.to_status,
        )
        if advanced:
            services.status_history.append(
                entry=StatusHistoryEntry(
                    tenant_id=job.tenant_id,
                    external_job_id=job.id,
                    status=SUBMISSION_TRANSITION.to_status,
                    changed_by_name=partner_name,
                    changed_by_role=PARTNER_ROLE,
                    changed_at=now,
                )
            )

    if upload is not None and stored_path is not None:
        services.attachments.add(
            tenant_id=job.tenant_id,
            job_id=job.id,
            name=upload.filename,
            path=stored_path,
            size=upload.size,
            mime_type=upload.content_type or DEFAULT_CONTENT_TYPE,
            category=ATTACHMENT_CATEGORY_PARTNER_RESPONSE,
            added_by_name=partner_name,
            added_by_role=PARTNER_ROLE,
            created_at=now,
        )

    if field_values:
        services.fields.upsert_values(tenant_id=job.tenant_id, values=field_values)

    services.order_comments.append(
        comment=OrderComment(
            tenant_id=job.tenant_id,
            order_id=job.order_id,
            message=(
                f"Partner response received. Partner order #{order_number}, "
                f"completion date {format_date(completion_date)}."
            ),
            author_name=partner_name,
            author_role=PARTNER_ROLE,
            created_at=now,
        )
    )
    logger.info("partner_response_accepted job=%s tenant=%s", job.id, job.tenant_id)

    if job.partner_email:
        _send_confirmation(services, job, order_number=order_number, completion_date=completion_date, note=note)


def _send_confirmation(
    services: PortalServices,
    job: ExternalJob,
    *,
    order_number: str,
    completion_date: date,
    note: str | None,
) -> None:
    # The submission is already committed; a failed confirmation is only logged.
    try:
        message = build_confirmation_email(
            job=job,
            to=job.partner_email or "",
            partner_order_number=order_number,
            completion_date=completion_date,
            note=note,
            brand_name=services.config.brand_name,
        )
        services.mailer.send(message)
    except EmailDeliveryError as exc:
        logger.warning("confirmation_email_failed job=%s error=%s", job.id, exc)
    except Exception:
        logger.exception("confirmation_email_failed job=%s", job.id)
