from partner_portal.repositories.attachments import InMemoryAttachmentsRepository, PostgresAttachmentsRepository
from partner_portal.repositories.directory import InMemoryDirectoryRepository, PostgresDirectoryRepository
from partner_portal.repositories.external_jobs import (
    InMemoryExternalJobsRepository,
    PostgresExternalJobsRepository,
)
from partner_portal.repositories.job_fields import InMemoryJobFieldsRepository, PostgresJobFieldsRepository
from partner_portal.repositories.order_comments import (
    InMemoryOrderCommentsRepository,
    PostgresOrderCommentsRepository,
)
from partner_portal.repositories.status_history import (
    InMemoryStatusHistoryRepository,
    PostgresStatusHistoryRepository,
)

__all__ = [
    "InMemoryAttachmentsRepository",
    "PostgresAttachmentsRepository",
    "InMemoryDirectoryRepository",
    "PostgresDirectoryRepository",
    "InMemoryExternalJobsRepository",
    "PostgresExternalJobsRepository",
    "InMemoryJobFieldsRepository",
    "PostgresJobFieldsRepository",
    "InMemoryOrderCommentsRepository",
    "PostgresOrderCommentsRepository",
    "InMemoryStatusHistoryRepository",
    "PostgresStatusHistoryRepository",
]
