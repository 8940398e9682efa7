from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
import uuid

from app.core.database import get_db
from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.logging_config import set_user_id
from app.core.security import decode_access_token
from app.models.user import User, UserRole

# Errors are raised as AuthenticationError so they share the JSON envelope
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get current authenticated user"""
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    user_id = payload["sub"]

    # Validate user_id is a valid UUID format
    try:
        uuid.UUID(user_id)
    except ValueError:
        raise AuthenticationError("Invalid user ID format")

    result = await db.execute(
        select(User).where(User.id == user_id)
    )
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthorizationError("User account is inactive")

    set_user_id(str(user.id))
    return user


async def get_current_student(
    current_user: User = Depends(get_current_user)
) -> User:
    """Get current user, which must be a student"""
    if current_user.role != UserRole.STUDENT:
        raise AuthorizationError("Student access required")
    return current_user


async def get_current_lecturer(
    current_user: User = Depends(get_current_user)
) -> User:
    """Get current user, which must be a lecturer"""
    if current_user.role != UserRole.LECTURER:
        raise AuthorizationError("Lecturer access required")
    return current_user
