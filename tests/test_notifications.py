from __future__ import annotations

from datetime import UTC, date, datetime

from partner_portal.models import ExternalJob, OrderRef, TenantSettings
from partner_portal.notifications import (
    SignedAttachment,
    build_confirmation_email,
    build_dispatch_email,
    format_date,
    resolve_sender,
)

EXPIRES = datetime(2026, 3, 9, 9, 30, tzinfo=UTC)


def _job(**overrides) -> ExternalJob:
    values = {
        "id": "job_1",
        "tenant_id": "tenant_a",
        "order_id": "order_1",
        "partner_id": None,
        "partner_name": "Partner Co",
        "partner_email": "ops@partner.example",
        "partner_request_comment": "Use <matte> finish",
        "external_order_number": None,
        "due_date": date(2026, 3, 20),
        "status": "requested",
        "order": OrderRef(order_number="ORD-1001", customer_name="Globex & Sons"),
    }
    values.update(overrides)
    return ExternalJob(**values)


def _tenant(**overrides) -> TenantSettings:
    values = {
        "id": "tenant_a",
        "name": "Acme Print",
        "outbound_from_name": "Acme Orders",
        "outbound_from_email": "orders@acme.example",
        "outbound_reply_to_email": "support@acme.example",
        "outbound_sender_verified": True,
    }
    values.update(overrides)
    return TenantSettings(**values)


def _sender():
    return resolve_sender(None, actor_name="Sam", actor_email=None, brand_name="PWS")


def test_sender_uses_staff_address_on_verified_matching_domain():
    sender = resolve_sender(_tenant(), actor_name="Sam Sales", actor_email="Sam@Acme.example", brand_name="PWS")
    assert sender.from_address == "Sam Sales <Sam@Acme.example>"
    assert sender.reply_to == "Sam@Acme.example"


def test_sender_falls_back_to_tenant_when_user_mode_disabled():
    sender = resolve_sender(
        _tenant(outbound_use_user_sender=False),
        actor_name="Sam Sales",
        actor_email="sam@acme.example",
        brand_name="PWS",
    )
    assert sender.from_address == "Acme Orders <orders@acme.example>"


def test_sender_uses_provider_default_when_unverified():
    sender = resolve_sender(
        _tenant(outbound_sender_verified=False),
        actor_name="Sam Sales",
        actor_email="sam@acme.example",
        brand_name="PWS",
    )
    assert sender.from_address is None
    assert sender.reply_to == "sam@acme.example"


def test_sender_reply_to_falls_back_to_tenant():
    sender = resolve_sender(_tenant(), actor_name="Sam Sales", actor_email=None, brand_name="PWS")
    assert sender.from_address == "Acme Orders <orders@acme.example>"
    assert sender.reply_to == "support@acme.example"


def test_sender_without_tenant_uses_provider_defaults():
    sender = _sender()
    assert sender.from_address is None
    assert sender.reply_to is None


def test_dispatch_email_escapes_html_and_lists_attachments():
    message = build_dispatch_email(
        job=_job(),
        to="ops@partner.example",
        secure_link="https://portal.example/external-jobs/respond/tok",
        expires_at=EXPIRES,
        attachments=[
            SignedAttachment(name="a<b>.pdf", url="https://s/a?x=1&y=2"),
            SignedAttachment(name="unsigned.pdf", url=None),
        ],
        sender=_sender(),
        tenant=None,
        brand_name="PWS",
    )

    assert message.subject == "PWS request ORD-1001 - action required"
    assert "Globex &amp; Sons" in message.html
    assert "Use &lt;matte&gt; finish" in message.html
    assert '<a href="https://s/a?x=1&amp;y=2"' in message.html
    assert "<li>unsigned.pdf</li>" in message.html
    assert "09.03.2026. 09:30" in message.html
    assert "Due date: 20.03.2026." in message.text
    assert "External order: -" in message.text
    assert "Secure form: https://portal.example/external-jobs/respond/tok" in message.text


def test_dispatch_email_without_attachments_or_comment():
    message = build_dispatch_email(
        job=_job(partner_request_comment=None),
        to="ops@partner.example",
        secure_link="https://portal.example/external-jobs/respond/tok",
        expires_at=EXPIRES,
        attachments=[],
        sender=_sender(),
        tenant=None,
        brand_name="PWS",
    )
    assert "No attachments provided." in message.html
    assert "Comment" not in message.text


def test_tenant_templates_override_defaults():
    tenant = _tenant(
        request_email_subject_template="$company_name: order $order_number for $partner_name",
        request_email_html_template="<p>$customer_name</p>$attachments<a href='$secure_link'>open</a> $unknown",
        request_email_text_template="Open $secure_link before $expires_at",
    )
    message = build_dispatch_email(
        job=_job(),
        to="ops@partner.example",
        secure_link="https://portal.example/external-jobs/respond/tok",
        expires_at=EXPIRES,
        attachments=[SignedAttachment(name="a.pdf", url="https://s/a")],
        sender=_sender(),
        tenant=tenant,
        brand_name="PWS",
    )

    assert message.subject == "Acme Print: order ORD-1001 for Partner Co"
    assert message.html.startswith("<p>Globex &amp; Sons</p><p><strong>Attachments</strong></p>")
    assert "$unknown" in message.html
    assert message.text == "Open https://portal.example/external-jobs/respond/tok before 09.03.2026. 09:30"


def test_confirmation_email_echoes_submission():
    message = build_confirmation_email(
        job=_job(),
        to="ops@partner.example",
        partner_order_number="PO-<55>",
        completion_date=date(2026, 3, 18),
        note="Ships Friday",
        brand_name="PWS",
    )
    assert message.subject == "PWS confirmation ORD-1001"
    assert "PO-&lt;55&gt;" in message.html
    assert "Note: Ships Friday" in message.text
    assert "Completion date: 18.03.2026." in message.text


def test_format_date_handles_missing_and_raw_values():
    assert format_date(None) == "-"
    assert format_date("2026-03-18T00:00:00Z") == "18.03.2026."
    assert format_date("soon") == "soon"
