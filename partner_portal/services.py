from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from partner_portal.config import PortalConfig
from partner_portal.db.postgres import PostgresTxRunner
from partner_portal.mailer import Mailer, create_mailer_from_env
from partner_portal.object_storage import ObjectStorageBackend, create_object_storage_from_env
from partner_portal.repositories import (
    InMemoryAttachmentsRepository,
    InMemoryDirectoryRepository,
    InMemoryExternalJobsRepository,
    InMemoryJobFieldsRepository,
    InMemoryOrderCommentsRepository,
    InMemoryStatusHistoryRepository,
    PostgresAttachmentsRepository,
    PostgresDirectoryRepository,
    PostgresExternalJobsRepository,
    PostgresJobFieldsRepository,
    PostgresOrderCommentsRepository,
    PostgresStatusHistoryRepository,
)


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class InMemoryPortalData:
    jobs: dict[str, dict[str, Any]] = field(default_factory=dict)
    orders: dict[str, dict[str, Any]] = field(default_factory=dict)
    fields: list[dict[str, Any]] = field(default_factory=list)
    field_values: dict[tuple[str, str], dict[str, Any]] = field(default_factory=dict)
    attachments: list[dict[str, Any]] = field(default_factory=list)
    status_history: list[dict[str, Any]] = field(default_factory=list)
    order_comments: list[dict[str, Any]] = field(default_factory=list)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)
    tenants: dict[str, dict[str, Any]] = field(default_factory=dict)
    subscriptions: dict[str, dict[str, Any]] = field(default_factory=dict)
    role_permissions: dict[tuple[str, str], list[str]] = field(default_factory=dict)
    partners: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass
class PortalServices:
    """Everything the orchestrators touch, built once per process and injected."""

    config: PortalConfig
    jobs: Any
    fields: Any
    attachments: Any
    status_history: Any
    order_comments: Any
    directory: Any
    storage: ObjectStorageBackend
    mailer: Mailer
    clock: Callable[[], datetime] = utcnow


def build_in_memory_services(
    data: InMemoryPortalData,
    *,
    config: PortalConfig,
    storage: ObjectStorageBackend,
    mailer: Mailer,
    clock: Callable[[], datetime] = utcnow,
) -> PortalServices:
    return PortalServices(
        config=config,
        jobs=InMemoryExternalJobsRepository(data.jobs, data.orders),
        fields=InMemoryJobFieldsRepository(data.fields, data.field_values),
        attachments=InMemoryAttachmentsRepository(data.attachments),
        status_history=InMemoryStatusHistoryRepository(data.status_history),
        order_comments=InMemoryOrderCommentsRepository(data.order_comments),
        directory=InMemoryDirectoryRepository(
            profiles=data.profiles,
            tenants=data.tenants,
            subscriptions=data.subscriptions,
            role_permissions=data.role_permissions,
            partners=data.partners,
        ),
        storage=storage,
        mailer=mailer,
        clock=clock,
    )


def build_postgres_services(
    *,
    config: PortalConfig,
    storage: ObjectStorageBackend,
    mailer: Mailer,
) -> PortalServices:
    tx_runner = PostgresTxRunner(config.postgres_dsn)
    return PortalServices(
        config=config,
        jobs=PostgresExternalJobsRepository(tx_runner=tx_runner),
        fields=PostgresJobFieldsRepository(tx_runner=tx_runner),
        attachments=PostgresAttachmentsRepository(tx_runner=tx_runner),
        status_history=PostgresStatusHistoryRepository(tx_runner=tx_runner),
        order_comments=PostgresOrderCommentsRepository(tx_runner=tx_runner),
        directory=PostgresDirectoryRepository(tx_runner=tx_runner),
        storage=storage,
        mailer=mailer,
    )


def create_services_from_env(environ: Mapping[str, str] | None = None) -> PortalServices:
    config = PortalConfig.from_env(environ)
    storage = create_object_storage_from_env(environ)
    mailer = create_mailer_from_env(environ)
    if config.store_backend == "postgres":
        return build_postgres_services(config=config, storage=storage, mailer=mailer)
    if config.store_backend != "memory":
        raise RuntimeError(f"unsupported PORTAL_STORE_BACKEND: {config.store_backend}")
    return build_in_memory_services(InMemoryPortalData(), config=config, storage=storage, mailer=mailer)
