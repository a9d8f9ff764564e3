from __future__ import annotations

import http.client
import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol
from urllib import request
from urllib.error import HTTPError, URLError

from partner_portal.errors import EmailDeliveryError

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class OutboundEmail:
    to: str
    subject: str
    html: str
    text: str
    from_address: str | None = None
    reply_to: str | None = None


class Mailer(Protocol):
    def send(self, message: OutboundEmail) -> str | None: ...


@dataclass(frozen=True)
class ResendConfig:
    api_key: str
    default_from: str
    api_url: str = RESEND_API_URL
    timeout_s: float = 15.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ResendConfig":
        env = os.environ if environ is None else environ
        try:
            timeout_s = float(env.get("RESEND_TIMEOUT_S", "15").strip() or 15)
        except ValueError:
            timeout_s = 15.0
        return cls(
            api_key=env.get("RESEND_API_KEY", "").strip(),
            default_from=env.get("RESEND_FROM_EMAIL", "").strip(),
            api_url=env.get("RESEND_API_URL", RESEND_API_URL).strip() or RESEND_API_URL,
            timeout_s=timeout_s,
        )


class ResendMailer:
    """Deliver mail through the Resend HTTP API. Returns the provider message id."""

    def __init__(self, config: ResendConfig) -> None:
        self._config = config

    def send(self, message: OutboundEmail) -> str | None:
        from_address = message.from_address or self._config.default_from
        if not self._config.api_key or not from_address:
            raise EmailDeliveryError("RESEND_API_KEY or RESEND_FROM_EMAIL is not configured.")
        payload: dict[str, Any] = {
            "from": from_address,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        if message.reply_to:
            payload["reply_to"] = message.reply_to
        req = request.Request(
            self._config.api_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._config.api_key}",
            },
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self._config.timeout_s) as resp:
                body = resp.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace") if exc.fp is not None else ""
            raise EmailDeliveryError(detail or f"Resend request failed with HTTP {exc.code}.") from exc
        except (URLError, TimeoutError) as exc:
            raise EmailDeliveryError(f"Resend request failed: {exc}") from exc
        except (http.client.HTTPException, OSError) as exc:
            raise EmailDeliveryError(f"Resend connection failed: {exc!r}") from exc
        try:
            data = json.loads(body) if body else {}
        except json.JSONDecodeError:
            data = {}
        message_id = data.get("id") if isinstance(data, dict) else None
        logger.info("email_sent provider=resend message_id=%s", message_id)
        return message_id


def create_mailer_from_env(environ: Mapping[str, str] | None = None) -> Mailer:
    return ResendMailer(ResendConfig.from_env(environ))
