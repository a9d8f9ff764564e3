from __future__ import annotations

import sys
import time
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest

from partner_portal.errors import ObjectStorageError
from partner_portal.object_storage import (
    LocalObjectStorage,
    ObjectStorageConfig,
    S3ObjectStorage,
    clean_object_path,
    create_object_storage_from_env,
    storage_path_from_public_url,
)


def _s3_config(**overrides) -> ObjectStorageConfig:
    values = {
        "backend": "s3",
        "root": "/tmp",
        "prefix": "",
        "public_base_url": "",
        "signing_secret": "",
        "endpoint": "http://minio:9000",
        "region": "us-east-1",
        "access_key": "ak",
        "secret_key": "sk",
        "force_path_style": True,
    }
    values.update(overrides)
    return ObjectStorageConfig(**values)


@pytest.fixture
def mock_boto3():
    mock_boto3_module = MagicMock()
    mock_client = MagicMock()
    mock_boto3_module.session.Session.return_value.client.return_value = mock_client
    with patch.dict(sys.modules, {"boto3": mock_boto3_module}):
        yield mock_boto3_module, mock_client


def test_clean_object_path_blocks_traversal():
    assert clean_object_path("../../etc/passwd") == "object/object/etc/passwd"
    assert clean_object_path("/external-jobs/job 1//a b.pdf") == "external-jobs/job_1/a_b.pdf"


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://cdn.example/storage/v1/object/public/tenant-logos/tenant_a/logo.png", "tenant_a/logo.png"),
        ("tenant_a/logo.png", "tenant_a/logo.png"),
        ("https://cdn.example/other/logo.png", None),
        ("https://cdn.example/storage/v1/object/public/other-bucket/logo.png", None),
        (None, None),
        ("", None),
    ],
)
def test_storage_path_from_public_url(url, expected):
    assert storage_path_from_public_url(url, "tenant-logos") == expected


def test_local_upload_download_and_content_type(storage):
    key = storage.upload(bucket="order-attachments", path="jobs/a.txt", content_bytes=b"hello", content_type="text/plain")

    assert key == "jobs/a.txt"
    assert storage.download(bucket="order-attachments", path=key) == b"hello"
    assert storage.content_type(bucket="order-attachments", path=key) == "text/plain"


def test_local_upload_without_upsert_refuses_overwrite(storage):
    storage.upload(bucket="b", path="x.bin", content_bytes=b"1")
    with pytest.raises(ObjectStorageError):
        storage.upload(bucket="b", path="x.bin", content_bytes=b"2", upsert=False)
    assert storage.download(bucket="b", path="x.bin") == b"1"


def test_local_signed_url_verifies_only_untampered(storage):
    storage.upload(bucket="b", path="docs/a.pdf", content_bytes=b"%PDF")
    url = storage.create_signed_url(bucket="b", path="docs/a.pdf", expires_in=60)

    parsed = urlparse(url)
    assert parsed.path == "/storage/v1/object/sign/b/docs/a.pdf"
    query = parse_qs(parsed.query)
    expires = int(query["expires"][0])
    signature = query["signature"][0]
    assert storage.verify_signature(bucket="b", path="docs/a.pdf", expires=expires, signature=signature)
    assert not storage.verify_signature(bucket="b", path="docs/b.pdf", expires=expires, signature=signature)
    assert not storage.verify_signature(bucket="b", path="docs/a.pdf", expires=expires + 1, signature=signature)
    assert not storage.verify_signature(
        bucket="b", path="docs/a.pdf", expires=int(time.time()) - 1, signature=signature
    )


def test_local_signing_missing_object_fails(storage):
    with pytest.raises(ObjectStorageError):
        storage.create_signed_url(bucket="b", path="missing.pdf", expires_in=60)


def test_local_reset_clears_objects(storage):
    storage.upload(bucket="b", path="x/y.bin", content_bytes=b"1")
    storage.reset()
    with pytest.raises(FileNotFoundError):
        storage.download(bucket="b", path="x/y.bin")


def test_signed_route_rejects_bad_signature(client, storage):
    storage.upload(bucket="b", path="a.txt", content_bytes=b"secret", content_type="text/plain")
    url = storage.create_signed_url(bucket="b", path="a.txt", expires_in=60)

    assert client.get(url).content == b"secret"
    resp = client.get(url.replace("signature=", "signature=0"))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "STORAGE_SIGNATURE_INVALID"


def test_create_object_storage_from_env_defaults_to_local(tmp_path):
    backend = create_object_storage_from_env(
        {"OBJECT_STORAGE_ROOT": str(tmp_path / "objects"), "PORTAL_PUBLIC_ORIGIN": "https://portal.example"}
    )
    assert isinstance(backend, LocalObjectStorage)
    backend.upload(bucket="b", path="a.txt", content_bytes=b"1")
    assert backend.create_signed_url(bucket="b", path="a.txt", expires_in=60).startswith(
        "https://portal.example/storage/v1/object/sign/b/a.txt?"
    )


def test_s3_upload_applies_prefix_and_content_type(mock_boto3):
    _module, client = mock_boto3
    storage = S3ObjectStorage(config=_s3_config(prefix="portal"))

    key = storage.upload(bucket="order-attachments", path="jobs/a b.pdf", content_bytes=b"x", content_type=None)

    assert key == "jobs/a_b.pdf"
    client.put_object.assert_called_once_with(
        Bucket="order-attachments",
        Key="portal/jobs/a_b.pdf",
        Body=b"x",
        ContentType="application/octet-stream",
    )


def test_s3_upload_without_upsert_skips_existing(mock_boto3):
    _module, client = mock_boto3
    storage = S3ObjectStorage(config=_s3_config())

    with pytest.raises(ObjectStorageError):
        storage.upload(bucket="b", path="a.pdf", content_bytes=b"x", upsert=False)
    client.put_object.assert_not_called()


def test_s3_presigned_url(mock_boto3):
    _module, client = mock_boto3
    client.generate_presigned_url.return_value = "https://minio/b/a.pdf?X-Amz-Signature=abc"
    storage = S3ObjectStorage(config=_s3_config())

    url = storage.create_signed_url(bucket="b", path="a.pdf", expires_in=3600)

    assert url == "https://minio/b/a.pdf?X-Amz-Signature=abc"
    client.generate_presigned_url.assert_called_once_with(
        "get_object",
        Params={"Bucket": "b", "Key": "a.pdf"},
        ExpiresIn=3600,
    )


def test_s3_signing_error_is_wrapped(mock_boto3):
    _module, client = mock_boto3
    client.generate_presigned_url.side_effect = RuntimeError("no credentials")
    storage = S3ObjectStorage(config=_s3_config())

    with pytest.raises(ObjectStorageError, match="no credentials"):
        storage.create_signed_url(bucket="b", path="a.pdf", expires_in=60)


def test_s3_download_reads_prefixed_key(mock_boto3):
    _module, client = mock_boto3
    client.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=b"payload"))}
    storage = S3ObjectStorage(config=_s3_config(prefix="portal"))

    assert storage.download(bucket="b", path="jobs/a.pdf") == b"payload"
    client.get_object.assert_called_once_with(Bucket="b", Key="portal/jobs/a.pdf")
