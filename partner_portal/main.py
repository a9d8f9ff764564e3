from __future__ import annotations

import logging
import os
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from partner_portal.errors import ApiError
from partner_portal.logging_config import configure_logging
from partner_portal.routes import external_jobs, storage
from partner_portal.routes._deps import error_response, request_id_from_request, trace_id_from_request
from partner_portal.schemas import success_envelope
from partner_portal.security import JwtSecurityConfig, redact_path, redact_sensitive
from partner_portal.services import PortalServices, create_services_from_env

logger = logging.getLogger(__name__)

SECURITY_CODES = {
    "AUTH_UNAUTHORIZED",
    "TENANT_NOT_CONFIGURED",
    "PERMISSION_DENIED",
    "FEATURE_NOT_AVAILABLE",
    "STORAGE_SIGNATURE_INVALID",
}


def create_app(services: PortalServices | None = None) -> FastAPI:
    configure_logging()
    app = FastAPI(title="Partner Portal API", version="0.1.0")
    app.state.services = services or create_services_from_env()
    app.state.security_cfg = JwtSecurityConfig.from_env()
    security_cfg = app.state.security_cfg

    cors_origins = os.environ.get("CORS_ALLOW_ORIGINS", "")
    allow_origins = [x.strip() for x in cors_origins.split(",") if x.strip()]
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):
        incoming_trace_id = request.headers.get("x-trace-id", "").strip()
        request.state.trace_id = incoming_trace_id or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")
        request.state.auth_subject = "anonymous"
        started = time.perf_counter()
        response = await call_next(request)
        response.headers["x-trace-id"] = trace_id_from_request(request)
        response.headers["x-request-id"] = request_id_from_request(request)
        logger.info(
            "request method=%s path=%s status=%s latency_ms=%d trace_id=%s",
            request.method,
            redact_path(request.url.path),
            response.status_code,
            int((time.perf_counter() - started) * 1000),
            request.state.trace_id,
        )
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.code in SECURITY_CODES:
            headers_obj = dict(request.headers.items())
            headers_payload = redact_sensitive(headers_obj) if security_cfg.log_redaction_enabled else headers_obj
            logger.warning(
                "security_blocked code=%s detail=%s path=%s headers=%s trace_id=%s",
                exc.code,
                exc.message,
                redact_path(request.url.path),
                headers_payload,
                trace_id_from_request(request),
            )
        elif exc.http_status >= 500:
            logger.error("request_failed code=%s detail=%s trace_id=%s", exc.code, exc.message, trace_id_from_request(request))
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message="invalid payload",
            error_class="validation",
            retryable=False,
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    app.include_router(external_jobs.router)
    app.include_router(storage.router)
    return app
