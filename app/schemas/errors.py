from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    ROLE_UNDEFINED = "ROLE_UNDEFINED"
    ROLE_NOT_APPLICABLE = "ROLE_NOT_APPLICABLE"
    OTP_NOT_FOUND = "OTP_NOT_FOUND"
    ALREADY_VERIFIED = "ALREADY_VERIFIED"
    EXPIRED = "EXPIRED"
    ATTEMPTS_EXHAUSTED = "ATTEMPTS_EXHAUSTED"
    INVALID_CODE = "INVALID_CODE"
    TEMPLATE_UNAVAILABLE = "TEMPLATE_UNAVAILABLE"
    DISPATCH_FAILURE = "DISPATCH_FAILURE"


@dataclass(frozen=True)
class CoreError:
    """A caller-facing failure with optional hints for the UI."""

    code: ErrorCode
    message: str
    resend_otp: bool = False
    retry_after_seconds: Optional[int] = None
    attempts_remaining: Optional[int] = None


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a core operation: either ``value`` or ``error`` is set."""

    value: Optional[T] = None
    error: Optional[CoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, code: ErrorCode, message: str, **hints) -> "Outcome[T]":
        return cls(error=CoreError(code=code, message=message, **hints))
