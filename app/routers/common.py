from dataclasses import asdict

from fastapi import HTTPException, Request, status

from app.container import Services
from app.schemas.errors import CoreError, ErrorCode

ERROR_STATUS = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.ROLE_UNDEFINED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.ROLE_NOT_APPLICABLE: status.HTTP_403_FORBIDDEN,
    ErrorCode.OTP_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.ALREADY_VERIFIED: status.HTTP_409_CONFLICT,
    ErrorCode.EXPIRED: status.HTTP_410_GONE,
    ErrorCode.ATTEMPTS_EXHAUSTED: status.HTTP_403_FORBIDDEN,
    ErrorCode.INVALID_CODE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.TEMPLATE_UNAVAILABLE: status.HTTP_404_NOT_FOUND,
    ErrorCode.DISPATCH_FAILURE: status.HTTP_502_BAD_GATEWAY,
}


def get_services(request: Request) -> Services:
    return request.app.state.services


def raise_for_error(error: CoreError) -> None:
    detail = {
        key: value
        for key, value in asdict(error).items()
        if value is not None and value is not False
    }
    detail["code"] = error.code.value
    headers = None
    if error.retry_after_seconds is not None:
        headers = {"Retry-After": str(error.retry_after_seconds)}
    raise HTTPException(
        status_code=ERROR_STATUS[error.code], detail=detail, headers=headers
    )
