"""Shared query building blocks: counter updates, sorting and per-viewer flags."""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import asc, case, desc, func, select, update

from blogify.models.comment import Comment
from blogify.models.post import Post
from blogify.models.social import Bookmark, CommentLike, PostLike
from blogify.schemas.comment import CommentResponse
from blogify.schemas.post import SORT_FIELDS, PostDetail, PostSummary

logger = logging.getLogger(__name__)


def _counter_values(model, column_name: str, value) -> dict:
    values = {column_name: value}
    # Counter changes are not content edits
    if hasattr(model, "updated_at"):
        values["updated_at"] = model.updated_at
    return values


async def increment_counter(db, model, row_id: int, column_name: str, amount: int = 1):
    """Atomically add ``amount`` to a counter column, never going below zero."""
    column = getattr(model, column_name)
    value = column + amount
    if amount < 0:
        value = case((column + amount < 0, 0), else_=column + amount)
    await db.execute(
        update(model)
        .where(model.id == row_id)
        .values(**_counter_values(model, column_name, value))
        .execution_options(synchronize_session=False)
    )


async def recount_counter(db, model, row_id: int, column_name: str, count_query):
    """Atomically set a counter column to the result of a scalar count query."""
    await db.execute(
        update(model)
        .where(model.id == row_id)
        .values(**_counter_values(model, column_name, count_query.scalar_subquery()))
        .execution_options(synchronize_session=False)
    )


async def increment_view_count(session_factory, post_id: int):
    """Background task: count one view with a session of its own."""
    try:
        async with session_factory() as session:
            await increment_counter(session, Post, post_id, "view_count")
            await session.commit()
    except Exception as e:
        logger.error(f"Error incrementing view count for post {post_id}: {str(e)}")


def post_order_by(sort: Optional[str]):
    """Translate ``-likesCount`` style sort keys; unknown keys mean newest first."""
    sort = sort or "-createdAt"
    direction = desc if sort.startswith("-") else asc
    column_name = SORT_FIELDS.get(sort.lstrip("-"))
    if column_name is None:
        return [desc(Post.created_at), desc(Post.id)]
    return [direction(getattr(Post, column_name)), desc(Post.id)]


async def serialize_posts(db, posts: Iterable[Post], user=None, detail: bool = False) -> List[PostSummary]:
    posts = list(posts)
    schema = PostDetail if detail else PostSummary
    liked, bookmarked = set(), set()

    if user is not None and posts:
        post_ids = [post.id for post in posts]
        liked = set((await db.execute(
            select(PostLike.post_id).filter(PostLike.user_id == user.id, PostLike.post_id.in_(post_ids))
        )).scalars().all())
        bookmarked = set((await db.execute(
            select(Bookmark.post_id).filter(Bookmark.user_id == user.id, Bookmark.post_id.in_(post_ids))
        )).scalars().all())

    items = []
    for post in posts:
        item = schema.model_validate(post)
        item.is_liked = post.id in liked
        item.is_bookmarked = post.id in bookmarked
        items.append(item)
    return items


async def serialize_comments(db, comments: Iterable[Comment], user=None) -> List[CommentResponse]:
    comments = list(comments)
    liked = set()

    if user is not None and comments:
        liked = set((await db.execute(
            select(CommentLike.comment_id).filter(
                CommentLike.user_id == user.id,
                CommentLike.comment_id.in_([comment.id for comment in comments])
            )
        )).scalars().all())

    items = []
    for comment in comments:
        item = CommentResponse.model_validate(comment)
        item.is_liked = comment.id in liked
        items.append(item)
    return items


async def post_stats(db) -> dict:
    row = (await db.execute(
        select(
            func.count(Post.id),
            func.coalesce(func.sum(case((Post.published.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(Post.view_count), 0),
            func.coalesce(func.sum(Post.likes_count), 0),
            func.coalesce(func.sum(Post.comments_count), 0),
        )
    )).one()
    return {
        "totalPosts": row[0],
        "publishedPosts": row[1],
        "totalViews": row[2],
        "totalLikes": row[3],
        "totalComments": row[4],
    }


async def comment_stats(db) -> dict:
    row = (await db.execute(
        select(
            func.count(Comment.id),
            func.coalesce(func.sum(case((Comment.is_deleted.is_(False), 1), else_=0)), 0),
            func.coalesce(func.sum(Comment.likes_count), 0),
        )
    )).one()
    return {
        "totalComments": row[0],
        "activeComments": row[1],
        "totalLikes": row[2],
    }
