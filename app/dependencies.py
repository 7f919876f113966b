from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.config import settings
from app.services.momo_client import MomoClient
from app.services.reconciliation import ReconciliationEngine
from app.services.rate_limit import RateLimiter

security = HTTPBearer(auto_error=False)

ADMIN_ROLES = {"admin", "staff"}
CHECKOUT_ROLES = {"bot", "admin"}


@dataclass(frozen=True)
class Principal:
    subject: str
    role: str | None


def get_current_principal_optional(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Principal | None:
    """Decode a bearer token issued by the dashboard auth service."""
    if not credentials:
        return None
    try:
        payload = jwt.decode(credentials.credentials, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    sub = payload.get("sub")
    if sub is None:
        return None
    if payload.get("type") not in {None, "access"}:
        return None
    return Principal(subject=str(sub), role=payload.get("role"))


def get_current_principal(
    principal: Annotated[Principal | None, Depends(get_current_principal_optional)],
) -> Principal:
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def require_admin(principal: Annotated[Principal, Depends(get_current_principal)]) -> Principal:
    if principal.role not in ADMIN_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return principal


def require_checkout_caller(principal: Annotated[Principal, Depends(get_current_principal)]) -> Principal:
    if principal.role not in CHECKOUT_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Checkout access required")
    return principal


def _app_state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment services are not initialised",
        )
    return value


def get_momo_client(request: Request) -> MomoClient:
    return _app_state(request, "momo_client")


def get_notifier(request: Request):
    return _app_state(request, "notifier")


def get_reconciliation_engine(request: Request) -> ReconciliationEngine:
    return _app_state(request, "reconciliation_engine")


def get_webhook_rate_limiter(request: Request) -> RateLimiter:
    return _app_state(request, "webhook_rate_limiter")
