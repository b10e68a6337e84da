# payrecon/dependencies.py

"""
Authentication dependency for FastAPI.

Validates Supabase JWTs and extracts the user and tenant for all
protected endpoints.
"""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from payrecon.database import get_supabase_admin

security = HTTPBearer()

# Roles allowed to confirm matches and resolve duplicate cases
REVIEWER_ROLES = ("owner", "admin", "reviewer")


class CurrentUser(BaseModel):
    user_id: str
    tenant_id: str
    role: Optional[str] = None


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """
    Validate the Supabase JWT and return the user with its tenant.

    The tenant and role live in the user's app_metadata.
    This is a sync function -- FastAPI auto-runs it in a threadpool.
    """
    token = credentials.credentials

    try:
        user_response = get_supabase_admin().auth.get_user(token)
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if user_response is None or user_response.user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = user_response.user
    metadata = user.app_metadata or {}
    tenant_id = metadata.get("tenant_id")
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is not assigned to a tenant",
        )

    return CurrentUser(user_id=user.id, tenant_id=tenant_id, role=metadata.get("role"))


def require_reviewer(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Only reviewers may confirm matches or resolve duplicate cases."""
    if user.role not in REVIEWER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Reviewer role required",
        )
    return user
