from __future__ import annotations


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status


class DataIntegrityError(ApiError):
    """A stored row is missing a column the domain record cannot do without."""

    def __init__(self, *, entity: str, column: str) -> None:
        super().__init__(
            code="DATA_INTEGRITY_ERROR",
            message=f"{entity} row is missing required column: {column}",
            error_class="internal",
            retryable=False,
            http_status=500,
        )
        self.entity = entity
        self.column = column


class EmailDeliveryError(Exception):
    """Raised by a mailer when the provider did not accept the message."""


class ObjectStorageError(Exception):
    """Raised by an object storage backend when a read, write or signature fails."""


def bad_request(message: str, *, code: str = "REQ_VALIDATION_FAILED") -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="validation",
        retryable=False,
        http_status=400,
    )
