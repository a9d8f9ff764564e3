import pathlib
import re
import sys
from datetime import UTC, datetime, timedelta

import jwt
import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from partner_portal.config import PortalConfig
from partner_portal.errors import EmailDeliveryError
from partner_portal.main import create_app
from partner_portal.object_storage import LocalObjectStorage, ObjectStorageConfig
from partner_portal.services import InMemoryPortalData, build_in_memory_services
from partner_portal.tokens import hash_token

FIXED_NOW = datetime(2026, 3, 2, 9, 30, tzinfo=UTC)
JWT_SECRET = "jwt_test_secret"
LIVE_TOKEN = "live_token_for_job_1"
EXPIRED_TOKEN = "expired_token_for_job_4"

STATE_KEYS = (
    "request_mode",
    "partner_email",
    "partner_request_sender_name",
    "partner_request_sender_email",
    "partner_request_sender_phone",
    "partner_request_sent_at",
    "partner_request_token_hash",
    "partner_request_token_expires_at",
    "status",
)


def _issue_token(*, secret: str, user_id: str, email: str | None = None, ttl_minutes: int = 30) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
        "iat": int(now.timestamp()),
        "iss": "test-issuer",
        "aud": "test-audience",
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id: str, *, email: str | None = None) -> dict[str, str]:
    token = _issue_token(secret=JWT_SECRET, user_id=user_id, email=email)
    return {"Authorization": f"Bearer {token}"}


def token_from_email(message) -> str:
    match = re.search(r"/external-jobs/respond/([A-Za-z0-9_-]+)", message.text)
    assert match is not None
    return match.group(1)


def state_of(row: dict) -> dict:
    return {key: row.get(key) for key in STATE_KEYS}


class FakeMailer:
    def __init__(self) -> None:
        self.sent = []
        self.fail_next = 0

    def send(self, message):
        if self.fail_next > 0:
            self.fail_next -= 1
            raise EmailDeliveryError("provider rejected message")
        self.sent.append(message)
        return f"msg_{len(self.sent)}"


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def _job_row(job_id: str, **overrides) -> dict:
    row = {
        "id": job_id,
        "tenant_id": "tenant_a",
        "order_id": "order_1",
        "partner_id": None,
        "partner_name": "Partner Co",
        "partner_email": "ops@partner.example",
        "partner_request_comment": "Please use matte finish.",
        "external_order_number": "EXT-77",
        "due_date": "2026-03-20",
        "status": "requested",
        "request_mode": "manual",
        "partner_request_sender_name": None,
        "partner_request_sender_email": None,
        "partner_request_sender_phone": None,
        "partner_request_sent_at": None,
        "partner_request_token_hash": None,
        "partner_request_token_expires_at": None,
        "partner_request_viewed_at": None,
    }
    row.update(overrides)
    return row


@pytest.fixture(autouse=True)
def jwt_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("JWT_SHARED_SECRET", JWT_SECRET)
    monkeypatch.setenv("JWT_ISSUER", "test-issuer")
    monkeypatch.setenv("JWT_AUDIENCE", "test-audience")
    monkeypatch.setenv("JWT_REQUIRED_CLAIMS", "sub,exp")
    yield


@pytest.fixture
def portal_data() -> InMemoryPortalData:
    data = InMemoryPortalData()
    data.tenants["tenant_a"] = {
        "id": "tenant_a",
        "name": "Acme Print",
        "billing_email": "billing@acme.example",
        "address": "1 Press Road",
        "logo_url": "http://testserver/storage/v1/object/public/tenant-logos/tenant_a/logo.png",
        "outbound_from_name": "Acme Print",
        "outbound_from_email": "orders@acme.example",
        "outbound_sender_verified": False,
    }
    data.subscriptions["tenant_a"] = {"plan_code": "pro", "status": "active"}
    data.subscriptions["tenant_b"] = {"plan_code": "basic", "status": "active"}
    data.profiles.update(
        {
            "user_sales": {"id": "user_sales", "tenant_id": "tenant_a", "full_name": "Sam Sales", "role": "Sales", "phone": "+1 555 0100"},
            "user_viewer": {"id": "user_viewer", "tenant_id": "tenant_a", "full_name": "Vic Viewer", "role": "Viewer"},
            "user_eng": {"id": "user_eng", "tenant_id": "tenant_a", "full_name": "Eve Engineer", "role": "Engineering"},
            "user_admin": {"id": "user_admin", "tenant_id": "tenant_a", "full_name": "Ada Admin", "is_admin": True},
            "user_orphan": {"id": "user_orphan", "tenant_id": None, "full_name": "No Tenant", "role": "Sales"},
            "user_basic": {"id": "user_basic", "tenant_id": "tenant_b", "full_name": "Bo Basic", "role": "Sales"},
        }
    )
    data.orders["order_1"] = {"order_number": "ORD-1001", "customer_name": "Globex"}
    data.jobs["job_1"] = _job_row("job_1")
    data.jobs["job_2"] = _job_row("job_2", partner_email=None, partner_id="partner_9")
    data.jobs["job_3"] = _job_row("job_3", partner_email=None, partner_id=None)
    data.jobs["job_b"] = _job_row("job_b", tenant_id="tenant_b")
    data.partners["partner_9"] = {"tenant_id": "tenant_a", "email": "hello@partner9.example"}
    data.fields.extend(
        [
            {
                "id": "f_manual",
                "tenant_id": "tenant_a",
                "key": "internal_note",
                "label": "Internal note",
                "field_type": "text",
                "scope": "manual",
                "is_required": True,
                "sort_order": 1,
            },
            {
                "id": "f_thickness",
                "tenant_id": "tenant_a",
                "key": "thickness",
                "label": "Thickness",
                "field_type": "number",
                "scope": "portal_response",
                "is_required": False,
                "unit": "mm",
                "sort_order": 2,
            },
        ]
    )
    return data


@pytest.fixture
def storage(tmp_path: pathlib.Path) -> LocalObjectStorage:
    return LocalObjectStorage(
        config=ObjectStorageConfig(
            backend="local",
            root=str(tmp_path / "object_store"),
            prefix="",
            public_base_url="http://testserver",
            signing_secret="storage_test_secret",
            endpoint="",
            region="",
            access_key="",
            secret_key="",
            force_path_style=True,
        )
    )


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(FIXED_NOW)


@pytest.fixture
def services(portal_data, storage, mailer, clock):
    config = PortalConfig.from_env({"PORTAL_PUBLIC_ORIGIN": "https://portal.example"})
    return build_in_memory_services(portal_data, config=config, storage=storage, mailer=mailer, clock=clock)


@pytest.fixture
def live_token(portal_data, storage) -> str:
    portal_data.jobs["job_1"].update(
        {
            "request_mode": "partner_portal",
            "partner_request_token_hash": hash_token(LIVE_TOKEN),
            "partner_request_token_expires_at": FIXED_NOW + timedelta(days=7),
            "partner_request_sent_at": FIXED_NOW - timedelta(hours=1),
            "partner_request_sender_name": "Sam Sales",
            "partner_request_sender_email": "sam@acme.example",
        }
    )
    storage.upload(
        bucket="order-attachments",
        path="external-jobs/job_1/drawing.pdf",
        content_bytes=b"%PDF-1.4 drawing",
        content_type="application/pdf",
    )
    portal_data.attachments.append(
        {
            "id": "att_1",
            "tenant_id": "tenant_a",
            "external_job_id": "job_1",
            "name": "drawing.pdf",
            "url": "external-jobs/job_1/drawing.pdf",
            "size": 16,
            "mime_type": "application/pdf",
            "created_at": FIXED_NOW - timedelta(days=1),
        }
    )
    return LIVE_TOKEN


@pytest.fixture
def client(services) -> TestClient:
    return TestClient(create_app(services=services))
