from __future__ import annotations

import hmac
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from attendance_engine.errors import ApiError
from attendance_engine.models import AuditActorType
from attendance_engine.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

ROLE_ADMIN = "admin"
ROLE_HR = "hr"
ROLE_EMPLOYEE = "employee"
KNOWN_ROLES: frozenset[str] = frozenset({ROLE_ADMIN, ROLE_HR, ROLE_EMPLOYEE})
REVIEWER_ROLES: tuple[str, ...] = (ROLE_ADMIN, ROLE_HR)


@dataclass(frozen=True, slots=True)
class Principal:
    employee_id: int
    role: str

    @property
    def actor_type(self) -> AuditActorType:
        if self.role == ROLE_ADMIN:
            return AuditActorType.ADMIN
        if self.role == ROLE_HR:
            return AuditActorType.HR
        return AuditActorType.EMPLOYEE


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    if not settings.jwt_secret:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token verification is not configured.")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc
    return payload


def principal_from_claims(claims: dict[str, Any]) -> Principal:
    subject = str(claims.get("sub") or "")
    if not subject.isdigit():
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")
    role = str(claims.get("role") or "").lower()
    if role not in KNOWN_ROLES:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Unknown role.")
    return Principal(employee_id=int(subject), role=role)


def require_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    principal = principal_from_claims(decode_token(credentials.credentials))
    request.state.actor = principal.role
    request.state.actor_id = str(principal.employee_id)
    return principal


def require_roles(*roles: str) -> Callable[..., Principal]:
    unknown = set(roles) - KNOWN_ROLES
    if unknown:
        raise ValueError(f"Unknown roles: {sorted(unknown)}")

    def _dependency(principal: Principal = Depends(require_principal)) -> Principal:
        if principal.role not in roles:
            raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
        return principal

    return _dependency


def ensure_can_act_for(principal: Principal, employee_id: int, *, allow_roles: tuple[str, ...] = (ROLE_ADMIN,)) -> None:
    if principal.employee_id == employee_id:
        return
    if principal.role in allow_roles:
        return
    raise ApiError(status_code=403, code="FORBIDDEN", message="Cannot act for another employee.")


def require_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    secret = (get_settings().cron_secret or "").strip()
    if not secret:
        raise ApiError(status_code=503, code="CRON_NOT_CONFIGURED", message="Cron secret is not configured.")
    if credentials is None or not hmac.compare_digest(credentials.credentials, secret):
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Invalid cron secret.")
