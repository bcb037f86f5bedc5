from __future__ import annotations

import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import JSONResponse

from widgetgate.core.exceptions import DatabaseError, StoreError
from widgetgate.core.logging import get_structlog_logger
from widgetgate.middleware.auth import get_current_contractor
from widgetgate.routes.deps import (
    client_ip,
    get_key_issuer,
    get_lead_capture_service,
    get_notifier,
    get_validator,
)
from widgetgate.schemas.widget import (
    ContractorSummary,
    KeyGenerateRequest,
    KeyGenerateResponse,
    LeadCaptureRequest,
    LeadCaptureResponse,
    WidgetValidateAllowed,
    WidgetValidateDenied,
    WidgetValidateRequest,
)
from widgetgate.services.key_issuer import KeyIssuer
from widgetgate.services.lead_capture import LeadCaptureService, LeadSubmission
from widgetgate.services.notifier import Notifier
from widgetgate.services.validator import Allowed, ValidationRequest, WidgetValidator

logger = get_structlog_logger(__name__)

router = APIRouter(tags=["widgets"])


@router.post(
    "/widget-validate",
    summary="Admission check for an embedded widget",
    responses={
        200: {"model": WidgetValidateAllowed},
        402: {"model": WidgetValidateDenied},
        403: {"model": WidgetValidateDenied},
        404: {"model": WidgetValidateDenied},
        429: {"model": WidgetValidateDenied},
    },
)
async def validate_widget(
    body: WidgetValidateRequest,
    request: Request,
    validator: WidgetValidator = Depends(get_validator),
) -> JSONResponse:
    if not body.widget_key or not body.calculator_type:
        denied = WidgetValidateDenied(
            reason="invalid_request",
            error="Missing required fields: widgetKey, calculatorType",
        )
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=denied.model_dump())

    decision = await validator.validate(
        ValidationRequest(
            widget_key=body.widget_key,
            calculator_type=body.calculator_type,
            domain=body.domain or None,
            visitor_ip=body.visitor_ip or client_ip(request),
            referer=body.referer or request.headers.get("referer"),
        )
    )

    if isinstance(decision, Allowed):
        contractor = decision.contractor
        allowed = WidgetValidateAllowed(
            contractor=ContractorSummary(
                id=contractor.id,
                business_name=contractor.business_name,
                email=contractor.email,
            )
        )
        return JSONResponse(status_code=status.HTTP_200_OK, content=allowed.model_dump(mode="json"))

    denied = WidgetValidateDenied(reason=decision.reason.value, error=decision.message)
    return JSONResponse(status_code=decision.http_status, content=denied.model_dump())


@router.post(
    "/widget-key-generate",
    response_model=KeyGenerateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a widget key for the signed-in contractor",
)
async def generate_widget_key(
    body: KeyGenerateRequest,
    contractor_id: uuid.UUID = Depends(get_current_contractor),
    issuer: KeyIssuer = Depends(get_key_issuer),
) -> KeyGenerateResponse:
    try:
        issued = await issuer.issue_with_retry(contractor_id, body.calculator_type, body.domain)
    except StoreError as e:
        logger.error("widget_key.issue_failed", contractor_id=str(contractor_id), error=e.message)
        raise DatabaseError("Failed to generate widget key. Please try again.") from e

    return KeyGenerateResponse(widget_key=issued.key, embed_code=issued.embed_snippet)


@router.post(
    "/widget-lead-capture",
    response_model=LeadCaptureResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Capture a lead submitted from an embedded widget",
)
async def capture_lead(
    body: LeadCaptureRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    service: LeadCaptureService = Depends(get_lead_capture_service),
    notifier: Notifier = Depends(get_notifier),
) -> LeadCaptureResponse:
    captured = await service.capture(
        LeadSubmission(
            widget_key=body.widget_key,
            calculator_type=body.calculator_type,
            name=body.name,
            email=body.email,
            phone=body.phone,
            address=body.address,
            project_details=body.project_details or {},
            estimated_value=body.estimated_value,
            visitor_ip=client_ip(request),
            referer=request.headers.get("referer"),
        )
    )

    background_tasks.add_task(notifier.notify_lead, captured.notification)
    return LeadCaptureResponse(lead_id=captured.lead_id)
