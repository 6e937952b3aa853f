import re
from datetime import datetime
from typing import Any, List, Optional

from pydantic import Field, root_validator, validator

from blogify.schemas.common import CamelModel
from blogify.schemas.user import AuthorSummary
from blogify.utils.sanitization import delta_has_text, extract_plain_text

TAG_PATTERN = re.compile(r"^[a-zA-Z0-9\s-]+$")
MAX_TAGS = 10
MIN_CONTENT_LENGTH = 10
MAX_CONTENT_LENGTH = 50000

SORT_FIELDS = {
    "createdAt": "created_at",
    "title": "title",
    "likesCount": "likes_count",
    "viewCount": "view_count",
    "commentsCount": "comments_count",
}


def parse_tags(raw) -> List[str]:
    """Accept repeated form values and comma separated strings alike."""
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [raw]
    tags = []
    for item in raw:
        if item is None:
            continue
        for part in str(item).split(","):
            part = part.strip()
            if part:
                tags.append(part)
    return tags


def _clean_tags(v):
    if v is None:
        return v
    if len(v) > MAX_TAGS:
        raise ValueError(f'Maximum {MAX_TAGS} tags allowed')
    cleaned = []
    for tag in v:
        tag = tag.strip().lower()
        if not 1 <= len(tag) <= 30:
            raise ValueError('Each tag must be between 1 and 30 characters')
        if not TAG_PATTERN.match(tag):
            raise ValueError('Tags can only contain letters, numbers, spaces, and hyphens')
        if tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def validate_publishable(content_html, content_delta):
    """Published posts need real text in both renderings."""
    length = len(extract_plain_text(content_html or ""))
    if not MIN_CONTENT_LENGTH <= length <= MAX_CONTENT_LENGTH:
        raise ValueError(
            f'Content must be between {MIN_CONTENT_LENGTH} and {MAX_CONTENT_LENGTH} characters'
        )
    if not delta_has_text(content_delta):
        raise ValueError('Content cannot be empty')


class PostCreate(CamelModel):
    title: str = Field(..., min_length=3, max_length=200)
    excerpt: Optional[str] = Field(None, max_length=500)
    content_delta: dict
    content_html: str
    tags: List[str] = []
    category: Optional[str] = Field(None, max_length=50)
    published: bool = True
    featured: bool = False

    @validator('title')
    def validate_title(cls, v):
        v = v.strip()
        if len(v) < 3:
            raise ValueError('Title must be between 3 and 200 characters')
        return v

    @validator('tags')
    def validate_tags(cls, v):
        return _clean_tags(v)

    @validator('category')
    def validate_category(cls, v):
        if v is not None:
            return v.strip() or None
        return v

    @root_validator(skip_on_failure=True)
    def validate_content(cls, values):
        if values.get('published'):
            validate_publishable(values.get('content_html'), values.get('content_delta'))
        return values


class PostUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=3, max_length=200)
    excerpt: Optional[str] = Field(None, max_length=500)
    content_delta: Optional[dict] = None
    content_html: Optional[str] = None
    tags: Optional[List[str]] = None
    category: Optional[str] = Field(None, max_length=50)
    published: Optional[bool] = None
    featured: Optional[bool] = None

    @validator('title')
    def validate_title(cls, v):
        if v is not None:
            v = v.strip()
            if len(v) < 3:
                raise ValueError('Title must be between 3 and 200 characters')
        return v

    @validator('tags')
    def validate_tags(cls, v):
        return _clean_tags(v)

    @validator('category')
    def validate_category(cls, v):
        if v is not None:
            return v.strip()
        return v


class PostStatusUpdate(CamelModel):
    published: Optional[bool] = None
    featured: Optional[bool] = None


class PostSummary(CamelModel):
    id: int
    title: str
    slug: str
    excerpt: str
    author: AuthorSummary
    cover_image: Optional[str] = None
    tags: List[str] = []
    category: Optional[str] = None
    likes_count: int
    comments_count: int
    view_count: int
    read_time: int
    published: bool
    featured: bool
    created_at: datetime
    updated_at: Optional[datetime] = None
    is_liked: bool = False
    is_bookmarked: bool = False


class PostDetail(PostSummary):
    content_delta: Any
    content_html: str


class LikeResult(CamelModel):
    is_liked: bool
    likes_count: int
