from __future__ import annotations

import hashlib
import hmac
import json
import os
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote, urlparse

from partner_portal.errors import ObjectStorageError

DEFAULT_CONTENT_TYPE = "application/octet-stream"
LOCAL_SIGN_PREFIX = "/storage/v1/object/sign"


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def _clean_segment(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", value.strip())
    if cleaned in {"", ".", ".."}:
        return "object"
    return cleaned


def clean_object_path(path: str) -> str:
    return "/".join(_clean_segment(part) for part in path.strip("/").split("/") if part)


def storage_path_from_public_url(url: str | None, bucket: str) -> str | None:
    """Turn a stored public object URL back into its path inside ``bucket``.

    Values that are already bare paths are returned as-is.
    """
    if not url:
        return None
    if not url.startswith("http"):
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    marker = f"/storage/v1/object/public/{bucket}/"
    index = parsed.path.find(marker)
    if index == -1:
        return None
    return parsed.path[index + len(marker) :] or None


@dataclass(frozen=True)
class ObjectStorageConfig:
    backend: str
    root: str
    prefix: str
    public_base_url: str
    signing_secret: str
    endpoint: str
    region: str
    access_key: str
    secret_key: str
    force_path_style: bool


class ObjectStorageBackend:
    backend_name = "base"

    def upload(
        self,
        *,
        bucket: str,
        path: str,
        content_bytes: bytes,
        content_type: str | None = None,
        upsert: bool = True,
    ) -> str:
        raise NotImplementedError

    def download(self, *, bucket: str, path: str) -> bytes:
        raise NotImplementedError

    def create_signed_url(self, *, bucket: str, path: str, expires_in: int) -> str:
        raise NotImplementedError


class LocalObjectStorage(ObjectStorageBackend):
    """Filesystem storage whose signed URLs are served by the app's storage route."""

    backend_name = "local"

    def __init__(self, *, config: ObjectStorageConfig) -> None:
        self._root = Path(config.root)
        self._prefix = config.prefix.strip("/")
        self._public_base_url = config.public_base_url.rstrip("/")
        self._signing_secret = config.signing_secret.encode("utf-8")
        self._root.mkdir(parents=True, exist_ok=True)

    def upload(
        self,
        *,
        bucket: str,
        path: str,
        content_bytes: bytes,
        content_type: str | None = None,
        upsert: bool = True,
    ) -> str:
        key = clean_object_path(path)
        target = self._path_for(bucket, key)
        if target.exists() and not upsert:
            raise ObjectStorageError(f"object already exists: {bucket}/{key}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content_bytes)
            self._write_meta(
                target,
                {
                    "content_type": content_type or DEFAULT_CONTENT_TYPE,
                    "size": len(content_bytes),
                    "created_at": _now_iso(),
                },
            )
        except OSError as exc:
            raise ObjectStorageError(str(exc)) from exc
        return key

    def download(self, *, bucket: str, path: str) -> bytes:
        target = self._path_for(bucket, clean_object_path(path))
        if not target.exists():
            raise FileNotFoundError(f"{bucket}/{path}")
        return target.read_bytes()

    def content_type(self, *, bucket: str, path: str) -> str:
        meta = self._read_meta(self._path_for(bucket, clean_object_path(path)))
        return str(meta.get("content_type") or DEFAULT_CONTENT_TYPE)

    def create_signed_url(self, *, bucket: str, path: str, expires_in: int) -> str:
        key = clean_object_path(path)
        if not self._path_for(bucket, key).exists():
            raise ObjectStorageError(f"object not found: {bucket}/{key}")
        expires = int(time.time()) + int(expires_in)
        signature = self._signature(bucket, key, expires)
        return (
            f"{self._public_base_url}{LOCAL_SIGN_PREFIX}/{quote(bucket)}/{quote(key)}"
            f"?expires={expires}&signature={signature}"
        )

    def verify_signature(self, *, bucket: str, path: str, expires: int, signature: str) -> bool:
        key = clean_object_path(path)
        if expires < int(time.time()):
            return False
        return hmac.compare_digest(self._signature(bucket, key, expires), signature)

    def reset(self) -> None:
        if not self._root.exists():
            return
        for path in sorted(self._root.rglob("*"), reverse=True):
            if path.is_file():
                path.unlink()
            elif path.is_dir():
                path.rmdir()

    def _signature(self, bucket: str, key: str, expires: int) -> str:
        message = f"{bucket}\n{key}\n{expires}".encode("utf-8")
        return hmac.new(self._signing_secret, message, hashlib.sha256).hexdigest()

    def _path_for(self, bucket: str, key: str) -> Path:
        base = self._root / _clean_segment(bucket)
        if self._prefix:
            base = base / self._prefix
        return base / key

    def _meta_path(self, path: Path) -> Path:
        return Path(f"{path}.meta.json")

    def _read_meta(self, path: Path) -> dict[str, Any]:
        meta_path = self._meta_path(path)
        if not meta_path.exists():
            return {}
        try:
            return json.loads(meta_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}

    def _write_meta(self, path: Path, meta: dict[str, Any]) -> None:
        meta_path = self._meta_path(path)
        meta_path.write_text(json.dumps(meta, ensure_ascii=True, sort_keys=True), encoding="utf-8")


class S3ObjectStorage(ObjectStorageBackend):
    backend_name = "s3"

    def __init__(self, *, config: ObjectStorageConfig) -> None:
        try:
            import boto3  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("boto3 is required for s3 object storage backend") from exc
        self._prefix = config.prefix.strip("/")
        session = boto3.session.Session(
            aws_access_key_id=config.access_key or None,
            aws_secret_access_key=config.secret_key or None,
            region_name=config.region or None,
        )
        self._client = session.client(
            "s3",
            endpoint_url=config.endpoint or None,
            config=boto3.session.Config(s3={"addressing_style": "path" if config.force_path_style else "auto"}),
        )

    def _key(self, path: str) -> str:
        key = clean_object_path(path)
        if self._prefix:
            return f"{self._prefix}/{key}"
        return key

    def upload(
        self,
        *,
        bucket: str,
        path: str,
        content_bytes: bytes,
        content_type: str | None = None,
        upsert: bool = True,
    ) -> str:
        key = self._key(path)
        if not upsert and self._object_exists(bucket, key):
            raise ObjectStorageError(f"object already exists: {bucket}/{key}")
        try:
            self._client.put_object(
                Bucket=bucket,
                Key=key,
                Body=content_bytes,
                ContentType=content_type or DEFAULT_CONTENT_TYPE,
            )
        except Exception as exc:
            raise ObjectStorageError(str(exc)) from exc
        return clean_object_path(path)

    def download(self, *, bucket: str, path: str) -> bytes:
        response = self._client.get_object(Bucket=bucket, Key=self._key(path))
        return response["Body"].read()

    def create_signed_url(self, *, bucket: str, path: str, expires_in: int) -> str:
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": self._key(path)},
                ExpiresIn=int(expires_in),
            )
        except Exception as exc:
            raise ObjectStorageError(str(exc)) from exc

    def _object_exists(self, bucket: str, key: str) -> bool:
        try:
            self._client.head_object(Bucket=bucket, Key=key)
            return True
        except Exception:
            return False


def create_object_storage_from_env(environ: Mapping[str, str] | None = None) -> ObjectStorageBackend:
    env = os.environ if environ is None else environ
    backend = env.get("OBJECT_STORAGE_BACKEND", "local").strip().lower() or "local"
    config = ObjectStorageConfig(
        backend=backend,
        root=env.get("OBJECT_STORAGE_ROOT", "/tmp/partner-portal-storage").strip() or "/tmp/partner-portal-storage",
        prefix=env.get("OBJECT_STORAGE_PREFIX", "").strip(),
        public_base_url=env.get("OBJECT_STORAGE_PUBLIC_BASE_URL", "").strip()
        or env.get("PORTAL_PUBLIC_ORIGIN", "").strip(),
        signing_secret=env.get("OBJECT_STORAGE_SIGNING_SECRET", "").strip() or os.urandom(32).hex(),
        endpoint=env.get("OBJECT_STORAGE_ENDPOINT", "").strip(),
        region=env.get("OBJECT_STORAGE_REGION", "").strip(),
        access_key=env.get("OBJECT_STORAGE_ACCESS_KEY", "").strip(),
        secret_key=env.get("OBJECT_STORAGE_SECRET_KEY", "").strip(),
        force_path_style=env.get("OBJECT_STORAGE_FORCE_PATH_STYLE", "true").strip().lower()
        not in {"0", "false", "no", "off"},
    )
    if config.backend == "s3":
        return S3ObjectStorage(config=config)
    return LocalObjectStorage(config=config)
