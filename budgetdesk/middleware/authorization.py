import hmac
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import structlog

from budgetdesk.config import settings
from budgetdesk.middleware.auth import get_current_user

logger = structlog.get_logger()

# Roles allowed to mutate the ledger and administer budgets
FPA_ROLES = ("super_admin", "admin", "fpa_admin", "fpa_user")
# Roles allowed to change approval policy
POLICY_ROLES = ("super_admin", "admin", "fpa_admin")


def _forbidden(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"error": {"code": "INSUFFICIENT_PERMISSIONS", "message": message}},
    )


def require_roles(*allowed_roles: str):
    """
    FastAPI dependency factory for role-based access control.

    Usage:
        @router.post("/reserve")
        async def reserve(
            current_user: dict = Depends(get_current_user),
            _auth: None = Depends(require_roles(*FPA_ROLES)),
        ):
    """
    async def check_role(current_user: dict = Depends(get_current_user)):
        if current_user["role"] not in allowed_roles:
            raise _forbidden(
                f"Role '{current_user['role']}' cannot perform this action. "
                f"Required: {allowed_roles}"
            )
        return None

    return check_role


def has_internal_secret(request: Request) -> bool:
    """True when X-Internal-Secret matches INTERNAL_JOB_SECRET."""
    secret = settings.INTERNAL_JOB_SECRET
    provided = request.headers.get("X-Internal-Secret")
    if not secret or not provided:
        return False
    if not hmac.compare_digest(provided, secret):
        logger.warning("internal_auth_failed", path=request.url.path)
        return False
    return True


_optional_bearer = HTTPBearer(auto_error=False)


async def require_sync_caller(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_optional_bearer),
) -> dict:
    """
    Sync may be triggered by a scheduler holding X-Internal-Secret or by an
    FP&A user. Scheduler calls carry no user and act as "system".
    """
    if has_internal_secret(request):
        return {"user_id": None, "customer_id": None, "role": "system",
                "email": None, "name": None}
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": {"code": "AUTH_REQUIRED", "message": "Not authenticated"}},
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = await get_current_user(credentials)
    if user["role"] not in FPA_ROLES:
        raise _forbidden(f"Role '{user['role']}' cannot trigger a sync")
    return user
