"""Outbound partner emails: request dispatch and submission confirmation."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from html import escape
from string import Template

from partner_portal.mailer import OutboundEmail
from partner_portal.models import ExternalJob, TenantSettings


@dataclass(frozen=True)
class SignedAttachment:
    name: str
    url: str | None
    id: str | None = None


@dataclass(frozen=True)
class SenderIdentity:
    from_address: str | None
    reply_to: str | None


def format_date(value: date | str | None) -> str:
    if value is None:
        return "-"
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError:
            return value
    return value.strftime("%d.%m.%Y.")


def format_datetime(value: datetime) -> str:
    return value.strftime("%d.%m.%Y. %H:%M")


def email_domain(value: str | None) -> str:
    if not value or "@" not in value:
        return ""
    return value.split("@", 1)[1].strip().lower()


def resolve_sender(
    tenant: TenantSettings | None,
    *,
    actor_name: str,
    actor_email: str | None,
    brand_name: str,
) -> SenderIdentity:
    """Verified-sender policy for dispatch mail.

    The staff member's own address is used only when the tenant verified its
    sending domain, enabled user-sender mode and the staff member's address is
    on that domain. Without a verified tenant address the provider default
    sender applies (``from_address`` is None).
    """
    tenant = tenant or TenantSettings(id="")
    tenant_name = tenant.name or brand_name
    tenant_from_name = tenant.outbound_from_name or tenant_name
    tenant_from_email = tenant.outbound_from_email or ""
    tenant_domain = email_domain(tenant_from_email)
    can_use_actor = (
        tenant.outbound_sender_verified
        and tenant.outbound_use_user_sender
        and bool(actor_email)
        and bool(tenant_domain)
        and email_domain(actor_email) == tenant_domain
    )
    from_address = None
    if tenant.outbound_sender_verified and tenant_from_email:
        if can_use_actor:
            from_address = f"{actor_name} <{actor_email}>"
        else:
            from_address = f"{tenant_from_name} <{tenant_from_email}>"
    reply_to = actor_email or tenant.outbound_reply_to_email or None
    return SenderIdentity(from_address=from_address, reply_to=reply_to)


def _attachment_items(attachments: Sequence[SignedAttachment]) -> str:
    items = []
    for item in attachments:
        name = escape(item.name)
        if item.url:
            items.append(f'<li><a href="{escape(item.url)}" target="_blank" rel="noreferrer">{name}</a></li>')
        else:
            items.append(f"<li>{name}</li>")
    return "".join(items)


def build_dispatch_email(
    *,
    job: ExternalJob,
    to: str,
    secure_link: str,
    expires_at: datetime,
    attachments: Sequence[SignedAttachment],
    sender: SenderIdentity,
    tenant: TenantSettings | None,
    brand_name: str,
) -> OutboundEmail:
    due_date = format_date(job.due_date)
    external_order = job.external_order_number or "-"
    comment = job.partner_request_comment
    attachments_html = (
        f"<p><strong>Attachments</strong></p><ul>{_attachment_items(attachments)}</ul>"
        if attachments
        else "<p>No attachments provided.</p>"
    )
    comment_html = f"<p><strong>Comment:</strong> {escape(comment)}</p>" if comment else ""
    subject = f"{brand_name} request {job.order_number} - action required"
    html = f"""
      <p>Hello,</p>
      <p>You have received a new external job request from {escape(job.customer_name)}.</p>
      <p><strong>Order:</strong> {escape(job.order_number)}</p>
      <p><strong>External order:</strong> {escape(external_order)}</p>
      <p><strong>Due date:</strong> {due_date}</p>
      {comment_html}
      {attachments_html}
      <p><a href="{escape(secure_link)}">Open secure form</a></p>
      <p>This link expires on {format_datetime(expires_at)}.</p>
    """
    lines = [
        "Hello,",
        f"Order: {job.order_number}",
        f"External order: {external_order}",
        f"Due date: {due_date}",
        f"Comment: {comment}" if comment else "",
        f"Secure form: {secure_link}",
        f"Link expires: {expires_at.isoformat()}",
    ]
    text = "\n".join(line for line in lines if line.strip())

    if tenant is not None:
        # Tenant templates use $placeholders; unknown ones are left untouched.
        context = {
            "order_number": job.order_number,
            "customer_name": job.customer_name,
            "external_order_number": external_order,
            "due_date": due_date,
            "comment": comment or "",
            "partner_name": job.partner_display_name,
            "secure_link": secure_link,
            "expires_at": format_datetime(expires_at),
            "company_name": tenant.company_name or brand_name,
        }
        html_context = {key: escape(value) for key, value in context.items()}
        html_context["attachments"] = attachments_html
        if tenant.request_email_subject_template:
            subject = Template(tenant.request_email_subject_template).safe_substitute(context)
        if tenant.request_email_html_template:
            html = Template(tenant.request_email_html_template).safe_substitute(html_context)
        if tenant.request_email_text_template:
            text = Template(tenant.request_email_text_template).safe_substitute(context)

    return OutboundEmail(
        to=to,
        subject=subject,
        html=html,
        text=text,
        from_address=sender.from_address,
        reply_to=sender.reply_to,
    )


def build_confirmation_email(
    *,
    job: ExternalJob,
    to: str,
    partner_order_number: str,
    completion_date: date,
    note: str | None,
    brand_name: str,
) -> OutboundEmail:
    completion = format_date(completion_date)
    note_html = f"<p><strong>Note:</strong> {escape(note)}</p>" if note else ""
    html = f"""
      <p>Thank you. Your response was received.</p>
      <p><strong>Order:</strong> {escape(job.order_number)}</p>
      <p><strong>Your order number:</strong> {escape(partner_order_number)}</p>
      <p><strong>Completion date:</strong> {completion}</p>
      {note_html}
    """
    lines = [
        "Thank you. Your response was received.",
        f"Order: {job.order_number}",
        f"Your order number: {partner_order_number}",
        f"Completion date: {completion}",
    ]
    if note:
        lines.append(f"Note: {note}")
    return OutboundEmail(
        to=to,
        subject=f"{brand_name} confirmation {job.order_number}",
        html=html,
        text="\n".join(lines),
    )
