from __future__ import annotations

import math
import re
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from partner_portal.errors import bad_request
from partner_portal.models import SCOPE_MANUAL, SCOPE_PORTAL_RESPONSE, FieldDefinition, FieldValue

CONTEXT_DISPATCH_VIEW = "dispatch-view"
CONTEXT_PORTAL_RESPONSE = "portal-response"
CONTEXTS = (CONTEXT_DISPATCH_VIEW, CONTEXT_PORTAL_RESPONSE)

# status is driven by the state machine, never by a form field
RESERVED_KEYS = frozenset({"status"})

_EPOCH = datetime.min.replace(tzinfo=UTC)


def normalize_field_key(key: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", key.strip().lower())


def _sort_key(field: FieldDefinition) -> tuple[int, datetime]:
    return (field.sort_order, field.created_at or _EPOCH)


def resolve_fields(fields: Iterable[FieldDefinition], context: str = CONTEXT_PORTAL_RESPONSE) -> list[FieldDefinition]:
    """Pick the fields a partner sees and submits.

    A tenant that curated any ``portal_response`` fields gets exactly that
    subset; otherwise the manual (or unscoped) fields are shown. The form
    renderer and the submission validator both go through here so they never
    disagree about which fields exist.
    """
    if context not in CONTEXTS:
        raise ValueError(f"unknown field context: {context}")
    candidates = sorted(
        (f for f in fields if f.is_active and normalize_field_key(f.key) not in RESERVED_KEYS),
        key=_sort_key,
    )
    portal = [f for f in candidates if f.scope == SCOPE_PORTAL_RESPONSE]
    preferred = portal or [f for f in candidates if (f.scope or SCOPE_MANUAL) == SCOPE_MANUAL]
    seen: set[str] = set()
    resolved: list[FieldDefinition] = []
    for field in preferred:
        if field.id in seen:
            continue
        seen.add(field.id)
        resolved.append(field)
    return resolved


def _parse_number(text: str) -> int | float:
    try:
        return int(text)
    except ValueError:
        pass
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(text)
    return value


def coerce_field_value(field: FieldDefinition, raw: Any) -> Any:
    if field.field_type == "toggle":
        return raw == "true"
    text = raw.strip() if isinstance(raw, str) else ""
    if field.field_type == "number":
        if not text:
            return None
        try:
            return _parse_number(text)
        except ValueError:
            raise bad_request(f"{field.label} must be a number.", code="FIELD_VALIDATION_FAILED") from None
    if not text:
        return None
    if field.field_type == "select" and field.options and text not in field.options:
        raise bad_request(f"{field.label} must be one of the allowed options.", code="FIELD_VALIDATION_FAILED")
    return text


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_submission(
    fields: Sequence[FieldDefinition],
    get_raw: Callable[[str], Any],
    *,
    tenant_id: str,
    external_job_id: str,
) -> list[FieldValue]:
    """Coerce every resolved field and return the values worth storing.

    Raises on the first invalid field, before the caller has written anything.
    """
    values: list[FieldValue] = []
    for field in fields:
        value = coerce_field_value(field, get_raw(f"field_{field.id}"))
        if field.is_required and _is_empty(value):
            raise bad_request(f"{field.label} is required.", code="FIELD_VALIDATION_FAILED")
        if value is None:
            continue
        values.append(
            FieldValue(
                tenant_id=tenant_id,
                external_job_id=external_job_id,
                field_id=field.id,
                value=value,
            )
        )
    return values
