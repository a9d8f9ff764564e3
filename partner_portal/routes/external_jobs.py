from __future__ import annotations

import json

from fastapi import APIRouter, Request
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from partner_portal.access import authorize_dispatch
from partner_portal.dispatch import dispatch_partner_request
from partner_portal.errors import bad_request
from partner_portal.intake import PartnerSubmission, build_response_view, submit_partner_response
from partner_portal.models import SubmittedFile
from partner_portal.routes._deps import request_origin, services_from_request, trace_id_from_request
from partner_portal.schemas import DispatchRequest, success_envelope

router = APIRouter(prefix="/api/external-jobs", tags=["external-jobs"])


async def _read_dispatch_request(request: Request) -> DispatchRequest:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = {}
    if not isinstance(body, dict):
        body = {}
    try:
        return DispatchRequest.model_validate(body)
    except ValidationError:
        raise bad_request("externalJobId is required.") from None


@router.post("/send")
async def send_to_partner(request: Request):
    services = services_from_request(request)
    actor = await run_in_threadpool(
        authorize_dispatch,
        directory=services.directory,
        authorization=request.headers.get("Authorization"),
        security_cfg=request.app.state.security_cfg,
    )
    request.state.auth_subject = actor.user_id
    payload = await _read_dispatch_request(request)
    result = await run_in_threadpool(
        dispatch_partner_request,
        services,
        actor=actor,
        external_job_id=payload.external_job_id,
        origin=request_origin(request, services.config.public_origin),
    )
    return success_envelope({"expiresAt": result.expires_at.isoformat()}, trace_id_from_request(request))


@router.get("/respond/{token}")
def get_partner_request(token: str, request: Request):
    services = services_from_request(request)
    view = build_response_view(services, token)
    return success_envelope(view, trace_id_from_request(request))


async def _read_submission(request: Request) -> PartnerSubmission:
    content_type = request.headers.get("content-type", "")
    form = await request.form()

    def _text(name: str) -> str:
        value = form.get(name)
        return value if isinstance(value, str) else ""

    files: list[SubmittedFile] = []
    for item in form.getlist("file"):
        if isinstance(item, UploadFile):
            files.append(
                SubmittedFile(
                    filename=item.filename or "upload.bin",
                    content_type=item.content_type,
                    content=await item.read(),
                )
            )
    field_inputs: dict[str, str] = {}
    for key, value in form.multi_items():
        if key.startswith("field_") and isinstance(value, str) and key not in field_inputs:
            field_inputs[key] = value
    return PartnerSubmission(
        content_type=content_type,
        partner_order_number=_text("partnerOrderNumber"),
        completion_date=_text("completionDate"),
        note=_text("note"),
        files=files,
        field_inputs=field_inputs,
    )


@router.post("/respond/{token}")
async def post_partner_response(token: str, request: Request):
    services = services_from_request(request)
    submission = await _read_submission(request)
    await run_in_threadpool(submit_partner_response, services, token, submission)
    return success_envelope({}, trace_id_from_request(request))
