import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from blogify.models.user import User
from blogify.utils.security import TokenError, TokenExpiredError, decode_access_token, oauth2_scheme
from database import get_db

logger = logging.getLogger(__name__)

__all__ = ["get_current_user", "get_optional_user", "require_admin", "get_db", "logger"]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
        token: Optional[str] = Depends(oauth2_scheme),
        db: AsyncSession = Depends(get_db)
) -> User:
    if not token:
        raise _unauthorized("Access token is required")

    try:
        payload = decode_access_token(token)
        user_id = int(payload["sub"])
    except TokenExpiredError:
        raise _unauthorized("Access token expired")
    except (TokenError, ValueError):
        raise _unauthorized("Invalid access token")

    user = await db.scalar(select(User).filter(User.id == user_id))
    if user is None:
        logger.warning(f"Token presented for missing user {user_id}")
        raise _unauthorized("User not found")

    if not user.is_active:
        raise _unauthorized("Account has been deactivated")

    return user


async def get_optional_user(
        token: Optional[str] = Depends(oauth2_scheme),
        db: AsyncSession = Depends(get_db)
) -> Optional[User]:
    """Resolve the caller when possible, otherwise proceed anonymously."""
    if not token:
        return None
    try:
        return await get_current_user(token, db)
    except HTTPException:
        return None


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return current_user
