import re
from datetime import datetime
from typing import Optional

from pydantic import EmailStr, Field, validator

from blogify.schemas.common import CamelModel

NAME_PATTERN = re.compile(r"^(?:[^\W\d_]|[\s'-])+$")


def _clean_name(v):
    v = v.strip()
    if len(v) < 2:
        raise ValueError('Name must be between 2 and 50 characters')
    if not NAME_PATTERN.match(v):
        raise ValueError('Name can only contain letters, spaces, apostrophes, and hyphens')
    return v


def _check_password(v):
    if not re.search(r"[a-z]", v) or not re.search(r"[A-Z]", v) or not re.search(r"\d", v):
        raise ValueError('Password must contain at least one lowercase letter, one uppercase letter, and one number')
    return v


class UserRegister(CamelModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)

    @validator('email', pre=True)
    def normalize_email(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @validator('email')
    def validate_email_length(cls, v):
        if len(v) > 100:
            raise ValueError('Email cannot exceed 100 characters')
        return v

    @validator('name')
    def validate_name(cls, v):
        return _clean_name(v)

    @validator('password')
    def validate_password(cls, v):
        return _check_password(v)


class UserLogin(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @validator('email', pre=True)
    def normalize_email(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class RefreshTokenRequest(CamelModel):
    refresh_token: Optional[str] = None


class ChangePassword(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128)
    confirm_password: str

    @validator('new_password')
    def validate_new_password(cls, v):
        return _check_password(v)

    @validator('confirm_password')
    def passwords_match(cls, v, values):
        if 'new_password' in values and v != values['new_password']:
            raise ValueError('Password confirmation does not match new password')
        return v


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    bio: Optional[str] = Field(None, max_length=500)

    @validator('name')
    def validate_name(cls, v):
        if v is not None:
            return _clean_name(v)
        return v

    @validator('bio')
    def strip_bio(cls, v):
        if v is not None:
            return v.strip()
        return v


class DeactivateAccount(CamelModel):
    password: str = Field(..., min_length=1)


class RoleUpdate(CamelModel):
    role: str = Field(..., pattern="^(user|admin)$")


class AuthorSummary(CamelModel):
    id: int
    name: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None


class UserPublic(AuthorSummary):
    role: str
    followers_count: int
    following_count: int
    created_at: datetime


class UserResponse(UserPublic):
    email: str
    is_active: bool
    last_login: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserListItem(UserPublic):
    is_following: bool = False


class AdminUserItem(UserResponse):
    stats: dict = {}
