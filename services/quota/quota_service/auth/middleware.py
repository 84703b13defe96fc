"""
ABOUTME: Auth dependencies using Supabase JWT validation
ABOUTME: Resolves the caller and checks that a body user_id matches it
"""

import uuid
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from quota_service.auth.models import User
from quota_service.db.supabase_client import SupabaseQuotaStore
from quota_service.exceptions import UserMismatchError
from quota_service.utils.logging import log_security_event

security = HTTPBearer(auto_error=False)

# Token validation always goes to Supabase Auth, whatever the quota backend
auth_backend = SupabaseQuotaStore()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> User:
    """
    Validate JWT token and return current user
    Uses Supabase's built-in JWT validation
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No authorization header provided",
        )

    try:
        auth_response = auth_backend.client.auth.get_user(credentials.credentials)
    except Exception as e:
        log_security_event("auth_failure", severity="WARNING", extra={"reason": str(e)})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Could not validate credentials: {str(e)}",
        )

    if not auth_response or not auth_response.user:
        log_security_event("auth_failure", severity="WARNING")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    user = auth_response.user

    return User(
        id=uuid.UUID(str(user.id)),
        email=user.email,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def require_auth(user: User = Depends(get_current_user)) -> User:
    """Simple dependency for routes that require auth"""
    return user


def resolve_target_user(user: User, requested_id: Optional[str]) -> str:
    """
    User id an operation applies to

    Callers may only name themselves; a different id is rejected.
    """
    own_id = str(user.id)
    if requested_id is not None and requested_id != own_id:
        log_security_event(
            "user_mismatch",
            user_id=own_id,
            severity="WARNING",
            extra={"requested_id": requested_id},
        )
        raise UserMismatchError(own_id, requested_id)
    return own_id
