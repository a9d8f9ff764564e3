from __future__ import annotations

from partner_portal.security import get_bearer_token, redact_path, redact_sensitive


def test_get_bearer_token_is_case_insensitive():
    assert get_bearer_token("Bearer abc") == "abc"
    assert get_bearer_token("bearer  abc ") == "abc"
    assert get_bearer_token("Basic abc") is None
    assert get_bearer_token(None) is None
    assert get_bearer_token("Bearer ") is None


def test_redact_path_masks_partner_token():
    assert redact_path("/api/external-jobs/respond/abcDEF123") == "/api/external-jobs/respond/***"
    assert redact_path("/api/external-jobs/send") == "/api/external-jobs/send"


def test_redact_sensitive_masks_nested_secrets():
    payload = {"authorization": "Bearer abc", "nested": {"api_key": "k", "keep": "v"}, "items": [{"token": "t"}]}

    redacted = redact_sensitive(payload)

    assert redacted["authorization"] == "***REDACTED***"
    assert redacted["nested"] == {"api_key": "***REDACTED***", "keep": "v"}
    assert redacted["items"] == [{"token": "***REDACTED***"}]
