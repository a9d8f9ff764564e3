from __future__ import annotations

from fastapi import APIRouter, Query, Request, Response

from partner_portal.errors import ApiError
from partner_portal.object_storage import LOCAL_SIGN_PREFIX, LocalObjectStorage
from partner_portal.routes._deps import services_from_request

router = APIRouter(tags=["storage"])


def _denied() -> ApiError:
    return ApiError(
        code="STORAGE_SIGNATURE_INVALID",
        message="signed url is invalid or expired",
        error_class="security_sensitive",
        retryable=False,
        http_status=403,
    )


@router.get(LOCAL_SIGN_PREFIX + "/{bucket}/{path:path}")
def get_signed_object(
    bucket: str,
    path: str,
    request: Request,
    expires: int = Query(...),
    signature: str = Query(...),
):
    storage = services_from_request(request).storage
    if not isinstance(storage, LocalObjectStorage):
        raise ApiError(
            code="REQ_NOT_FOUND",
            message="resource not found",
            error_class="validation",
            retryable=False,
            http_status=404,
        )
    if not storage.verify_signature(bucket=bucket, path=path, expires=expires, signature=signature):
        raise _denied()
    try:
        payload = storage.download(bucket=bucket, path=path)
    except FileNotFoundError:
        raise ApiError(
            code="STORAGE_OBJECT_MISSING",
            message="object not found",
            error_class="validation",
            retryable=False,
            http_status=404,
        ) from None
    return Response(content=payload, media_type=storage.content_type(bucket=bucket, path=path))
