from blogify.schemas.common import CamelModel


class BookmarkResult(CamelModel):
    is_bookmarked: bool
    action: str


class FollowResult(CamelModel):
    is_following: bool
    followers_count: int
