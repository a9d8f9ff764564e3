"""Typed records for the rows the portal reads and writes.

Every record is built through ``from_row`` so a row that lacks a required
column fails fast with ``DataIntegrityError`` instead of leaking ``None`` into
the orchestration code.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from partner_portal.errors import DataIntegrityError
from partner_portal.status_machine import ALL_STATUSES

REQUEST_MODE_MANUAL = "manual"
REQUEST_MODE_PARTNER_PORTAL = "partner_portal"

SCOPE_MANUAL = "manual"
SCOPE_PORTAL_RESPONSE = "portal_response"

FIELD_TYPES = ("text", "textarea", "number", "date", "select", "toggle")

ATTACHMENT_CATEGORY_PARTNER_RESPONSE = "partner_response"
PARTNER_ROLE = "Partner"


def _required(row: Mapping[str, Any], entity: str, column: str) -> Any:
    value = row.get(column)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise DataIntegrityError(entity=entity, column=column)
    return value


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class OrderRef:
    order_number: str | None
    customer_name: str | None


@dataclass(frozen=True)
class PartnerRequestState:
    """The job columns a dispatch overwrites, captured for compensation."""

    request_mode: str
    partner_email: str | None
    sender_name: str | None
    sender_email: str | None
    sender_phone: str | None
    sent_at: datetime | None
    token_hash: str | None
    token_expires_at: datetime | None
    status: str


@dataclass
class ExternalJob:
    id: str
    tenant_id: str
    order_id: str | None
    partner_id: str | None
    partner_name: str | None
    partner_email: str | None
    partner_request_comment: str | None
    external_order_number: str | None
    due_date: date | None
    status: str
    request_mode: str = REQUEST_MODE_MANUAL
    partner_request_sender_name: str | None = None
    partner_request_sender_email: str | None = None
    partner_request_sender_phone: str | None = None
    partner_request_sent_at: datetime | None = None
    partner_request_token_hash: str | None = None
    partner_request_token_expires_at: datetime | None = None
    partner_request_viewed_at: datetime | None = None
    partner_response_submitted_at: datetime | None = None
    partner_response_order_number: str | None = None
    partner_response_due_date: date | None = None
    partner_response_note: str | None = None
    order: OrderRef | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any], *, order: OrderRef | None = None) -> "ExternalJob":
        status = str(_required(row, "external_job", "status"))
        if status not in ALL_STATUSES:
            raise DataIntegrityError(entity="external_job", column="status")
        return cls(
            id=str(_required(row, "external_job", "id")),
            tenant_id=str(_required(row, "external_job", "tenant_id")),
            order_id=_optional_str(row.get("order_id")),
            partner_id=_optional_str(row.get("partner_id")),
            partner_name=_optional_str(row.get("partner_name")),
            partner_email=_optional_str(row.get("partner_email")),
            partner_request_comment=_optional_str(row.get("partner_request_comment")),
            external_order_number=_optional_str(row.get("external_order_number")),
            due_date=parse_date(row.get("due_date")),
            status=status,
            request_mode=_optional_str(row.get("request_mode")) or REQUEST_MODE_MANUAL,
            partner_request_sender_name=_optional_str(row.get("partner_request_sender_name")),
            partner_request_sender_email=_optional_str(row.get("partner_request_sender_email")),
            partner_request_sender_phone=_optional_str(row.get("partner_request_sender_phone")),
            partner_request_sent_at=parse_datetime(row.get("partner_request_sent_at")),
            partner_request_token_hash=_optional_str(row.get("partner_request_token_hash")),
            partner_request_token_expires_at=parse_datetime(row.get("partner_request_token_expires_at")),
            partner_request_viewed_at=parse_datetime(row.get("partner_request_viewed_at")),
            partner_response_submitted_at=parse_datetime(row.get("partner_response_submitted_at")),
            partner_response_order_number=_optional_str(row.get("partner_response_order_number")),
            partner_response_due_date=parse_date(row.get("partner_response_due_date")),
            partner_response_note=_optional_str(row.get("partner_response_note")),
            order=order,
        )

    def partner_request_state(self) -> PartnerRequestState:
        return PartnerRequestState(
            request_mode=self.request_mode,
            partner_email=self.partner_email,
            sender_name=self.partner_request_sender_name,
            sender_email=self.partner_request_sender_email,
            sender_phone=self.partner_request_sender_phone,
            sent_at=self.partner_request_sent_at,
            token_hash=self.partner_request_token_hash,
            token_expires_at=self.partner_request_token_expires_at,
            status=self.status,
        )

    @property
    def order_number(self) -> str:
        if self.order is None or not self.order.order_number:
            return "-"
        return self.order.order_number

    @property
    def customer_name(self) -> str:
        if self.order is None or not self.order.customer_name:
            return "-"
        return self.order.customer_name

    @property
    def partner_display_name(self) -> str:
        return self.partner_name or PARTNER_ROLE


@dataclass(frozen=True)
class FieldDefinition:
    id: str
    tenant_id: str
    key: str
    label: str
    field_type: str
    scope: str | None = None
    is_required: bool = False
    options: tuple[str, ...] = ()
    unit: str | None = None
    sort_order: int = 0
    is_active: bool = True
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FieldDefinition":
        field_type = str(_required(row, "external_job_field", "field_type"))
        if field_type not in FIELD_TYPES:
            raise DataIntegrityError(entity="external_job_field", column="field_type")
        return cls(
            id=str(_required(row, "external_job_field", "id")),
            tenant_id=str(_required(row, "external_job_field", "tenant_id")),
            key=str(_required(row, "external_job_field", "key")),
            label=str(_required(row, "external_job_field", "label")),
            field_type=field_type,
            scope=_optional_str(row.get("scope")),
            is_required=bool(row.get("is_required") or False),
            options=_parse_options(row.get("options")),
            unit=_optional_str(row.get("unit")),
            sort_order=int(row.get("sort_order") or 0),
            is_active=bool(row.get("is_active", True)),
            created_at=parse_datetime(row.get("created_at")),
        )


def _parse_options(raw: Any) -> tuple[str, ...]:
    # Stored as {"options": [...]} jsonb; a bare list is accepted too.
    if isinstance(raw, Mapping):
        raw = raw.get("options")
    if not isinstance(raw, (list, tuple)):
        return ()
    return tuple(str(x) for x in raw if str(x).strip())


@dataclass(frozen=True)
class FieldValue:
    tenant_id: str
    external_job_id: str
    field_id: str
    value: Any

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FieldValue":
        return cls(
            tenant_id=str(_required(row, "external_job_field_value", "tenant_id")),
            external_job_id=str(_required(row, "external_job_field_value", "external_job_id")),
            field_id=str(_required(row, "external_job_field_value", "field_id")),
            value=row.get("value"),
        )


@dataclass(frozen=True)
class Attachment:
    id: str
    tenant_id: str
    external_job_id: str
    name: str
    path: str | None
    size: int | None = None
    mime_type: str | None = None
    category: str | None = None
    added_by_name: str | None = None
    added_by_role: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Attachment":
        size = row.get("size")
        return cls(
            id=str(_required(row, "external_job_attachment", "id")),
            tenant_id=str(_required(row, "external_job_attachment", "tenant_id")),
            external_job_id=str(_required(row, "external_job_attachment", "external_job_id")),
            name=_optional_str(row.get("name")) or "Attachment",
            path=_optional_str(row.get("url")),
            size=int(size) if size is not None else None,
            mime_type=_optional_str(row.get("mime_type")),
            category=_optional_str(row.get("category")),
            added_by_name=_optional_str(row.get("added_by_name")),
            added_by_role=_optional_str(row.get("added_by_role")),
            created_at=parse_datetime(row.get("created_at")),
        )


@dataclass(frozen=True)
class StatusHistoryEntry:
    tenant_id: str
    external_job_id: str
    status: str
    changed_by_name: str
    changed_by_role: str
    changed_at: datetime


@dataclass(frozen=True)
class OrderComment:
    tenant_id: str
    order_id: str | None
    message: str
    author_name: str
    author_role: str
    created_at: datetime


@dataclass(frozen=True)
class ActorProfile:
    id: str
    tenant_id: str | None
    full_name: str | None = None
    role: str | None = None
    phone: str | None = None
    is_admin: bool = False
    is_owner: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ActorProfile":
        return cls(
            id=str(_required(row, "profile", "id")),
            tenant_id=_optional_str(row.get("tenant_id")),
            full_name=_optional_str(row.get("full_name")),
            role=_optional_str(row.get("role")),
            phone=_optional_str(row.get("phone")),
            is_admin=bool(row.get("is_admin") or False),
            is_owner=bool(row.get("is_owner") or False),
        )


@dataclass(frozen=True)
class TenantSettings:
    id: str
    name: str | None = None
    legal_name: str | None = None
    billing_email: str | None = None
    address: str | None = None
    logo_url: str | None = None
    outbound_from_name: str | None = None
    outbound_from_email: str | None = None
    outbound_reply_to_email: str | None = None
    outbound_use_user_sender: bool = True
    outbound_sender_verified: bool = False
    request_email_subject_template: str | None = None
    request_email_html_template: str | None = None
    request_email_text_template: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TenantSettings":
        use_user_sender = row.get("outbound_use_user_sender")
        return cls(
            id=str(_required(row, "tenant", "id")),
            name=_optional_str(row.get("name")),
            legal_name=_optional_str(row.get("legal_name")),
            billing_email=_optional_str(row.get("billing_email")),
            address=_optional_str(row.get("address")),
            logo_url=_optional_str(row.get("logo_url")),
            outbound_from_name=_optional_str(row.get("outbound_from_name")),
            outbound_from_email=_optional_str(row.get("outbound_from_email")),
            outbound_reply_to_email=_optional_str(row.get("outbound_reply_to_email")),
            outbound_use_user_sender=True if use_user_sender is None else bool(use_user_sender),
            outbound_sender_verified=bool(row.get("outbound_sender_verified") or False),
            request_email_subject_template=_optional_str(row.get("external_request_email_subject_template")),
            request_email_html_template=_optional_str(row.get("external_request_email_html_template")),
            request_email_text_template=_optional_str(row.get("external_request_email_text_template")),
        )

    @property
    def company_name(self) -> str:
        return self.name or self.legal_name or ""


@dataclass(frozen=True)
class TenantSubscription:
    plan_code: str = "basic"
    status: str = "active"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TenantSubscription":
        return cls(
            plan_code=_optional_str(row.get("plan_code")) or "basic",
            status=_optional_str(row.get("status")) or "active",
        )


@dataclass
class SubmittedFile:
    filename: str
    content_type: str | None
    content: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.content)
