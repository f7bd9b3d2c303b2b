from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(eq=False)
class AppError(Exception):
    status_code: int
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    retryable: Optional[bool] = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "details": self.details or {},
        }
        if self.retryable is not None:
            payload["retryable"] = self.retryable
        return {"error": payload}


class ValidationError(AppError):
    """Malformed input or an invariant violated at save time."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(status_code=422, code="validation_error", message=message, details=details, retryable=False)


class NotFound(AppError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(status_code=404, code="not_found", message=message, details=details, retryable=False)


class StateViolation(AppError):
    """Operation not allowed in the entity's current lifecycle state."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(status_code=409, code="state_violation", message=message, details=details, retryable=False)


class InsufficientInventory(AppError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(status_code=409, code="insufficient_inventory", message=message, details=details, retryable=False)


class StayViolation(AppError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(status_code=409, code="stay_violation", message=message, details=details, retryable=False)


class RestrictionViolation(AppError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(status_code=409, code="restriction_violation", message=message, details=details, retryable=False)


class ConflictUnresolved(AppError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(status_code=409, code="conflict_unresolved", message=message, details=details, retryable=False)


class TransientFailure(AppError):
    """Persistence contention or timeout; safe to retry."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(status_code=503, code="transient_failure", message=message, details=details, retryable=True)


def error_response(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        }
    }
