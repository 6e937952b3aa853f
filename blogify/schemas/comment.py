from datetime import datetime
from typing import Optional

from pydantic import Field, validator

from blogify.schemas.common import CamelModel
from blogify.schemas.user import AuthorSummary

MAX_COMMENT_LENGTH = 1000
# MAX_COMMENT_LENGTH applies to the sanitized body
MAX_RAW_COMMENT_LENGTH = 5000


class CommentCreate(CamelModel):
    body: str = Field(..., min_length=1, max_length=MAX_RAW_COMMENT_LENGTH)
    parent: Optional[int] = None

    @validator('body')
    def validate_body(cls, v):
        if not v.strip():
            raise ValueError('Comment must be between 1 and 1000 characters')
        return v.strip()


class CommentUpdate(CamelModel):
    body: str = Field(..., min_length=1, max_length=MAX_RAW_COMMENT_LENGTH)

    @validator('body')
    def validate_body(cls, v):
        if not v.strip():
            raise ValueError('Comment must be between 1 and 1000 characters')
        return v.strip()


class CommentResponse(CamelModel):
    id: int
    post_id: int
    author: AuthorSummary
    body: str
    parent_id: Optional[int] = None
    likes_count: int
    replies_count: int
    is_edited: bool
    edited_at: Optional[datetime] = None
    is_deleted: bool
    created_at: datetime
    updated_at: Optional[datetime] = None
    is_liked: bool = False


class ModeratedComment(CommentResponse):
    content: str
    deleted_at: Optional[datetime] = None
    post_title: Optional[str] = None
    post_slug: Optional[str] = None
