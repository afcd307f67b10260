from fastapi import APIRouter, Depends

from app.container import Services
from app.routers.common import get_services, raise_for_error
from app.schemas.notifications import (
    BulkEmailRequest,
    BulkSmsRequest,
    EmailPayloadResponse,
    SmsSummaryResponse,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("/email", response_model=EmailPayloadResponse, response_model_exclude_none=True)
def send_email(
    payload: BulkEmailRequest, services: Services = Depends(get_services)
) -> EmailPayloadResponse:
    outcome = services.notifications.send_email(payload)
    if not outcome.ok:
        raise_for_error(outcome.error)
    sent = outcome.value
    return EmailPayloadResponse(
        to=sent.to,
        subject=sent.subject,
        html_content=sent.html_content,
        status=sent.status,
        delivery_warning=sent.delivery_warning,
    )


@router.post("/sms", response_model=SmsSummaryResponse, response_model_exclude_none=True)
def send_sms(
    payload: BulkSmsRequest, services: Services = Depends(get_services)
) -> SmsSummaryResponse:
    outcome = services.notifications.send_sms(payload)
    if not outcome.ok:
        raise_for_error(outcome.error)
    summary = outcome.value
    return SmsSummaryResponse(
        to=summary.to,
        content=summary.content,
        sent=summary.sent,
        failed=summary.failed,
        delivery_warning=summary.delivery_warning,
    )
