"""Partner access tokens.

A dispatch hands the partner a random bearer-less token inside the secure
link; only its SHA-256 digest is stored on the external job. Overwriting the
digest with a new dispatch is the only way a link is invalidated.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

from partner_portal.errors import ApiError

TOKEN_BYTES = 32
DEFAULT_TOKEN_TTL_DAYS = 7
NOT_FOUND_MESSAGE = "Request not found or the secure link has expired."


def issue_token() -> str:
    raw = secrets.token_bytes(TOKEN_BYTES)
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def token_expiry(now: datetime, ttl_days: int = DEFAULT_TOKEN_TTL_DAYS) -> datetime:
    return now + timedelta(days=ttl_days)


def verify_token(
    candidate: str,
    stored_digest: str | None,
    expires_at: datetime | None,
    *,
    now: datetime,
) -> None:
    # NotFound and Expired share one message so callers cannot tell expired tokens from unknown ones.
    if not candidate or not stored_digest or not hmac.compare_digest(hash_token(candidate), stored_digest):
        raise ApiError(
            code="PARTNER_REQUEST_NOT_FOUND",
            message=NOT_FOUND_MESSAGE,
            error_class="validation",
            retryable=False,
            http_status=404,
        )
    if expires_at is not None and now > expires_at:
        raise ApiError(
            code="PARTNER_REQUEST_EXPIRED",
            message=NOT_FOUND_MESSAGE,
            error_class="validation",
            retryable=False,
            http_status=404,
        )
