from datetime import timedelta

from fastapi import HTTPException
from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from blogify.models.comment import Comment
from blogify.models.post import Post
from config import (
    COMMENT_FLOOD_MAX,
    COMMENT_FLOOD_WINDOW_MINUTES,
    POST_FLOOD_MAX,
    POST_FLOOD_WINDOW_MINUTES,
)
from database import utcnow


class FloodProtection:
    """Anti-flood protection for user generated content."""

    def __init__(self, model, owner_column, max_items: int = 5, time_window: int = 20, label: str = "item"):
        """
        Initialize flood protection.

        Args:
            model: Mapped class whose rows are counted
            owner_column: Column holding the creating user's id
            max_items: Maximum number of rows allowed in time window
            time_window: Time window in minutes
            label: Human readable name used in the error message
        """
        self.model = model
        self.owner_column = owner_column
        self.max_items = max_items
        self.time_window = time_window
        self.label = label

    async def check_rate_limit(self, user_id: int, db: AsyncSession) -> bool:
        """
        Check if user has exceeded the rate limit.

        Args:
            user_id: ID of the user
            db: Database session

        Returns:
            bool: True if user can create another item

        Raises:
            HTTPException: If rate limit is exceeded
        """
        now = utcnow()
        time_threshold = now - timedelta(minutes=self.time_window)

        query = select(func.count(), func.min(self.model.created_at)).select_from(self.model).filter(
            and_(
                self.owner_column == user_id,
                self.model.created_at >= time_threshold
            )
        )

        result = await db.execute(query)
        item_count, oldest = result.one()

        if item_count >= self.max_items:
            # The window frees up when the oldest counted row ages out
            oldest = oldest.replace(tzinfo=now.tzinfo) if oldest.tzinfo is None else oldest
            remaining_time = oldest + timedelta(minutes=self.time_window) - now
            total_seconds = max(int(remaining_time.total_seconds()), 0)
            minutes = total_seconds // 60
            seconds = total_seconds % 60

            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. You can create a new {self.label} in {minutes} minutes and {seconds} seconds"
            )

        return True


post_flood_protection = FloodProtection(
    Post, Post.author_id, POST_FLOOD_MAX, POST_FLOOD_WINDOW_MINUTES, "post"
)
comment_flood_protection = FloodProtection(
    Comment, Comment.author_id, COMMENT_FLOOD_MAX, COMMENT_FLOOD_WINDOW_MINUTES, "comment"
)
