from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from partner_portal.errors import DataIntegrityError
from partner_portal.models import (
    Attachment,
    ExternalJob,
    FieldDefinition,
    TenantSettings,
    parse_date,
    parse_datetime,
)


def test_external_job_requires_status():
    with pytest.raises(DataIntegrityError) as exc:
        ExternalJob.from_row({"id": "job_1", "tenant_id": "tenant_a"})
    assert exc.value.code == "DATA_INTEGRITY_ERROR"
    assert exc.value.entity == "external_job"
    assert exc.value.column == "status"


def test_external_job_requires_tenant():
    with pytest.raises(DataIntegrityError) as exc:
        ExternalJob.from_row({"id": "job_1", "tenant_id": "  ", "status": "requested"})
    assert exc.value.column == "tenant_id"


def test_external_job_defaults_without_order():
    job = ExternalJob.from_row({"id": "job_1", "tenant_id": "tenant_a", "status": "ordered", "due_date": "2026-03-20"})

    assert job.order_number == "-"
    assert job.customer_name == "-"
    assert job.partner_display_name == "Partner"
    assert job.request_mode == "manual"
    assert job.due_date == date(2026, 3, 20)


def test_field_definition_rejects_unknown_type():
    with pytest.raises(DataIntegrityError) as exc:
        FieldDefinition.from_row({"id": "f", "tenant_id": "t", "key": "k", "label": "K", "field_type": "color"})
    assert exc.value.column == "field_type"


def test_field_definition_accepts_bare_option_list():
    field = FieldDefinition.from_row(
        {"id": "f", "tenant_id": "t", "key": "k", "label": "K", "field_type": "select", "options": ["a", " ", "b"]}
    )
    assert field.options == ("a", "b")
    assert field.is_active is True


def test_attachment_defaults_name():
    attachment = Attachment.from_row({"id": "a", "tenant_id": "t", "external_job_id": "j", "url": None})
    assert attachment.name == "Attachment"
    assert attachment.path is None


def test_tenant_company_name_prefers_display_name():
    assert TenantSettings.from_row({"id": "t", "name": "Acme", "legal_name": "Acme d.o.o."}).company_name == "Acme"
    assert TenantSettings.from_row({"id": "t", "legal_name": "Acme d.o.o."}).company_name == "Acme d.o.o."
    assert TenantSettings.from_row({"id": "t"}).outbound_use_user_sender is True


def test_parse_helpers_normalize_timezones():
    assert parse_datetime("2026-03-02T09:30:00Z") == datetime(2026, 3, 2, 9, 30, tzinfo=UTC)
    assert parse_datetime("2026-03-02T09:30:00").tzinfo is UTC
    assert parse_datetime("") is None
    assert parse_date(datetime(2026, 3, 2, 23, 0, tzinfo=UTC)) == date(2026, 3, 2)
    assert parse_date("2026-03-02T10:00:00Z") == date(2026, 3, 2)
