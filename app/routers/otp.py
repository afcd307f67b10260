from fastapi import APIRouter, Depends

from app.container import Services
from app.routers.common import get_services, raise_for_error
from app.schemas.otp import (
    OtpGenerateRequest,
    OtpGenerateResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
)

router = APIRouter(prefix="/otp", tags=["otp"])


@router.post("/generate", response_model=OtpGenerateResponse, response_model_exclude_none=True)
def generate_otp(
    payload: OtpGenerateRequest, services: Services = Depends(get_services)
) -> OtpGenerateResponse:
    outcome = services.otp.generate_and_send_otp(payload)
    if not outcome.ok:
        raise_for_error(outcome.error)
    issued = outcome.value
    return OtpGenerateResponse(
        id=issued.id,
        transaction_reference=issued.transaction_reference,
        expires_at=issued.expires_at,
        delivery_warning=issued.delivery_warning,
        otp=issued.code if services.settings.otp_debug else None,
    )


@router.post("/verify", response_model=OtpVerifyResponse)
def verify_otp(
    payload: OtpVerifyRequest, services: Services = Depends(get_services)
) -> OtpVerifyResponse:
    outcome = services.otp.verify_otp(payload.transaction_reference, payload.code)
    if not outcome.ok:
        raise_for_error(outcome.error)
    result = outcome.value
    return OtpVerifyResponse(
        verified=result.verified,
        user_id=result.user_id,
        event_type=result.event_type,
        transaction_reference=result.transaction_reference,
        verified_at=result.verified_at,
    )
