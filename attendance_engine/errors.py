from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}


class ClockInBlocked(ApiError):
    """Clock-in refused by a calendar or leave rule. Expected and user facing."""

    def __init__(self, reason: str):
        super().__init__(
            status_code=422,
            code="CLOCK_IN_BLOCKED",
            message=f"Clock-in is not allowed today ({reason}).",
            details={"reason": reason},
        )
        self.reason = reason


class AlreadyClockedIn(ApiError):
    def __init__(self, *, log_id: int | None = None, shift_closed: bool = False):
        message = (
            "A shift was already completed today."
            if shift_closed
            else "An open shift already exists for today."
        )
        super().__init__(
            status_code=409,
            code="ALREADY_CLOCKED_IN",
            message=message,
            details={"log_id": log_id, "shift_closed": shift_closed},
        )
        self.log_id = log_id
        self.shift_closed = shift_closed


class NoOpenShift(ApiError):
    def __init__(self) -> None:
        super().__init__(status_code=409, code="NO_OPEN_SHIFT", message="No open shift to clock out from.")


class NotPending(ApiError):
    def __init__(self, *, request_id: int, status: str):
        super().__init__(
            status_code=409,
            code="NOT_PENDING",
            message="Leave request has already been decided.",
            details={"request_id": request_id, "status": status},
        )
        self.request_id = request_id
        self.status = status


class BalanceCapExceeded(ApiError):
    def __init__(self, *, allocated: float, used: float, requested_days: int):
        super().__init__(
            status_code=409,
            code="LEAVE_BALANCE_CAP_EXCEEDED",
            message="Approving this request would exceed the allocated leave balance.",
            details={"allocated": allocated, "used": used, "requested_days": requested_days},
        )


class NotFound(ApiError):
    def __init__(self, entity: str, entity_id: Any = None):
        super().__init__(
            status_code=404,
            code=f"{entity.upper()}_NOT_FOUND",
            message=f"{entity.replace('_', ' ').capitalize()} not found.",
            details={"id": entity_id} if entity_id is not None else None,
        )
        self.entity = entity
        self.entity_id = entity_id


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(request),
    }
    if details:
        error["details"] = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in details.items()
        }
    return JSONResponse(status_code=status_code, content={"error": error})
