from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from blogify.models.user import User
from blogify.schemas.user import ChangePassword, RefreshTokenRequest, UserLogin, UserRegister, UserResponse
from blogify.token_store import token_store
from blogify.utils.responses import error_response, success_response
from blogify.utils.security import (
    TokenError,
    access_token_lifetime,
    clear_refresh_cookie,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    get_password_hash,
    set_refresh_cookie,
    validate_password_strength,
    verify_password,
)
from config import REFRESH_COOKIE_NAME
from database import utcnow
from dependencies import get_current_user, get_db, logger

router = APIRouter()


def _presented_refresh_token(request: Request, body: Optional[RefreshTokenRequest]) -> Optional[str]:
    return request.cookies.get(REFRESH_COOKIE_NAME) or (body.refresh_token if body else None)


async def _issue_tokens(db: AsyncSession, user: User) -> dict:
    access_token = create_access_token(user.id)
    refresh_token = create_refresh_token(user.id)
    await token_store.add(db, user.id, refresh_token)
    return {
        "accessToken": access_token,
        "refreshToken": refresh_token,
        "expiresIn": access_token_lifetime(),
    }


def _refresh_failure(message: str) -> JSONResponse:
    response = JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=error_response(message, error=message),
    )
    clear_refresh_cookie(response)
    return response


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
        user_data: UserRegister,
        response: Response,
        db: AsyncSession = Depends(get_db)
):
    """Create an account and start a session."""
    try:
        problems = validate_password_strength(user_data.password)
        if problems:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Password does not meet requirements"
            )

        existing = await db.scalar(select(User.id).filter(User.email == user_data.email))
        if existing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="User with this email already exists"
            )

        user = User(
            name=user_data.name,
            email=user_data.email,
            password_hash=get_password_hash(user_data.password),
            last_login=utcnow(),
        )
        db.add(user)
        await db.flush()

        tokens = await _issue_tokens(db, user)
        await db.commit()

        set_refresh_cookie(response, tokens["refreshToken"])
        logger.info(f"Registered user {user.id}")
        return success_response(
            {"user": UserResponse.model_validate(user), **tokens},
            message="Authentication successful"
        )

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error registering user: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Registration failed"
        )


@router.post("/login")
async def login(
        credentials: UserLogin,
        response: Response,
        db: AsyncSession = Depends(get_db)
):
    """Exchange email and password for a token pair."""
    try:
        user = await db.scalar(select(User).filter(User.email == credentials.email))
        if not user or not verify_password(credentials.password, user.password_hash):
            logger.warning("Failed login attempt")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password"
            )

        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Account has been deactivated"
            )

        user.last_login = utcnow()
        tokens = await _issue_tokens(db, user)
        await db.commit()

        set_refresh_cookie(response, tokens["refreshToken"])
        logger.info(f"User {user.id} logged in")
        return success_response(
            {"user": UserResponse.model_validate(user), **tokens},
            message="Authentication successful"
        )

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error logging in: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Login failed"
        )


@router.post("/refresh-token")
async def refresh_token(
        request: Request,
        response: Response,
        body: Optional[RefreshTokenRequest] = None,
        db: AsyncSession = Depends(get_db)
):
    """Rotate the presented refresh token into a new token pair."""
    token = _presented_refresh_token(request, body)
    if not token:
        return _refresh_failure("Refresh token is required")

    try:
        payload = decode_refresh_token(token)
        user_id = int(payload["sub"])
    except (TokenError, ValueError):
        return _refresh_failure("Invalid refresh token")

    try:
        user = await db.scalar(select(User).filter(User.id == user_id))
        if not user:
            return _refresh_failure("User not found")
        if not user.is_active:
            return _refresh_failure("Account has been deactivated")

        if not await token_store.consume(db, user.id, token):
            await db.rollback()
            logger.warning(f"Rejected unknown or reused refresh token for user {user_id}")
            return _refresh_failure("Invalid refresh token")

        tokens = await _issue_tokens(db, user)
        await db.commit()

        set_refresh_cookie(response, tokens["refreshToken"])
        return success_response(tokens, message="Token refreshed successfully")

    except Exception as e:
        await db.rollback()
        logger.error(f"Error refreshing token: {str(e)}")
        return _refresh_failure("Token refresh failed")


@router.post("/logout")
async def logout(
        request: Request,
        response: Response,
        body: Optional[RefreshTokenRequest] = None,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """End the session bound to the presented refresh token."""
    try:
        token = _presented_refresh_token(request, body)
        if token:
            try:
                await token_store.remove(db, current_user.id, token)
            except TokenError:
                logger.info(f"Ignoring unusable refresh token on logout for user {current_user.id}")
        await db.commit()

        clear_refresh_cookie(response)
        return success_response(message="Logged out successfully")

    except Exception as e:
        await db.rollback()
        logger.error(f"Error logging out: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Logout failed"
        )


@router.post("/logout-all")
async def logout_all(
        response: Response,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """End every session of the current user."""
    try:
        await token_store.remove_all(db, current_user.id)
        await db.commit()

        clear_refresh_cookie(response)
        return success_response(message="Logged out from all devices successfully")

    except Exception as e:
        await db.rollback()
        logger.error(f"Error logging out everywhere: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Logout from all devices failed"
        )


@router.get("/me")
async def read_current_user(current_user: User = Depends(get_current_user)):
    return success_response({"user": UserResponse.model_validate(current_user)})


@router.put("/change-password")
async def change_password(
        passwords: ChangePassword,
        response: Response,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Change the password and revoke all sessions."""
    try:
        if not verify_password(passwords.current_password, current_user.password_hash):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Current password is incorrect"
            )

        if validate_password_strength(passwords.new_password):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="New password does not meet requirements"
            )

        current_user.password_hash = get_password_hash(passwords.new_password)
        await token_store.remove_all(db, current_user.id)
        await db.commit()

        clear_refresh_cookie(response)
        logger.info(f"User {current_user.id} changed password")
        return success_response(message="Password changed successfully. Please log in again.")

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error changing password: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Password change failed"
        )
