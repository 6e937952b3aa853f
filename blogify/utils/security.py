import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from fastapi import Response
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext

from config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ALGORITHM,
    BCRYPT_ROUNDS,
    COOKIE_DOMAIN,
    ENVIRONMENT,
    REFRESH_COOKIE_NAME,
    REFRESH_COOKIE_PATH,
    REFRESH_SECRET_KEY,
    REFRESH_TOKEN_EXPIRE_DAYS,
    SECRET_KEY,
    TOKEN_AUDIENCE,
    TOKEN_ISSUER,
)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)
logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class TokenError(Exception):
    """Raised when a JWT cannot be accepted."""

    reason = "invalid"


class TokenExpiredError(TokenError):
    reason = "expired"


class InvalidTokenError(TokenError):
    reason = "invalid"


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def validate_password_strength(password: str) -> List[str]:
    """Return the list of unmet password requirements (empty when valid)."""
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    if ENVIRONMENT == "production":
        if not re.search(r"[A-Z]", password):
            errors.append("Password must contain at least one uppercase letter")
        if not re.search(r"[a-z]", password):
            errors.append("Password must contain at least one lowercase letter")
        if not re.search(r"\d", password):
            errors.append("Password must contain at least one number")

    return errors


def _encode(payload: dict, secret: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = payload.copy()
    to_encode.update({
        "iat": now,
        "exp": now + expires_delta,
        "iss": TOKEN_ISSUER,
        "aud": TOKEN_AUDIENCE,
    })
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def _decode(token: str, secret: str, token_type: str) -> dict:
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            audience=TOKEN_AUDIENCE,
            issuer=TOKEN_ISSUER,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenExpiredError(f"{token_type} token expired") from e
    except jwt.PyJWTError as e:
        raise InvalidTokenError(f"Invalid {token_type} token") from e

    if payload.get("type") != token_type:
        raise InvalidTokenError(f"Invalid {token_type} token")
    return payload


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    return _encode(
        {"sub": str(user_id), "type": "access"},
        SECRET_KEY,
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    return _encode(
        {"sub": str(user_id), "type": "refresh", "jti": secrets.token_hex(16)},
        REFRESH_SECRET_KEY,
        expires_delta or timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_access_token(token: str) -> dict:
    return _decode(token, SECRET_KEY, "access")


def decode_refresh_token(token: str) -> dict:
    payload = _decode(token, REFRESH_SECRET_KEY, "refresh")
    if not payload.get("jti"):
        raise InvalidTokenError("Invalid refresh token")
    return payload


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def access_token_lifetime() -> str:
    return f"{ACCESS_TOKEN_EXPIRE_MINUTES}m"


def set_refresh_cookie(response: Response, token: str):
    production = ENVIRONMENT == "production"
    response.set_cookie(
        key=REFRESH_COOKIE_NAME,
        value=token,
        max_age=REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        path=REFRESH_COOKIE_PATH,
        domain=COOKIE_DOMAIN,
        secure=production,
        httponly=True,
        samesite="strict" if production else "lax",
    )


def clear_refresh_cookie(response: Response):
    response.delete_cookie(
        key=REFRESH_COOKIE_NAME,
        path=REFRESH_COOKIE_PATH,
        domain=COOKIE_DOMAIN,
    )
