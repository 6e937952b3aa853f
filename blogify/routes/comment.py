from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import asc, delete, desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blogify.flood_protection import comment_flood_protection
from blogify.models.comment import Comment
from blogify.models.post import Post
from blogify.models.social import CommentLike
from blogify.models.user import User
from blogify.schemas.comment import MAX_COMMENT_LENGTH, CommentCreate, CommentUpdate
from blogify.schemas.common import build_pagination
from blogify.schemas.post import LikeResult
from blogify.utils.permissions import require_owner_or_admin
from blogify.utils.queries import comment_stats, increment_counter, recount_counter, serialize_comments
from blogify.utils.responses import success_response
from blogify.utils.sanitization import sanitize_comment
from dependencies import get_current_user, get_db, get_optional_user, logger

router = APIRouter()


def _comment_order(sort: str):
    if sort == "oldest":
        return [asc(Comment.created_at), asc(Comment.id)]
    return [desc(Comment.created_at), desc(Comment.id)]


def _replies_count_query(parent_id: int):
    return select(func.count(Comment.id)).filter(
        Comment.parent_id == parent_id,
        Comment.is_deleted.is_(False)
    )


def _clean_body(raw: str) -> str:
    body = sanitize_comment(raw).strip()
    if not body:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Comment body cannot be empty"
        )
    if len(body) > MAX_COMMENT_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Comment must be between 1 and {MAX_COMMENT_LENGTH} characters"
        )
    return body


async def _get_live_comment(db: AsyncSession, comment_id: int) -> Comment:
    comment = await db.scalar(select(Comment).filter(Comment.id == comment_id))
    if not comment or comment.is_deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Comment not found"
        )
    return comment


async def soft_delete_comment(db: AsyncSession, comment: Comment):
    """Flag a comment deleted and keep the thread counters in step."""
    comment.soft_delete()
    await db.flush()
    if comment.parent_id is None:
        await increment_counter(db, Post, comment.post_id, "comments_count", -1)
    else:
        await recount_counter(db, Comment, comment.parent_id, "replies_count",
                              _replies_count_query(comment.parent_id))


@router.get("/stats")
async def get_comment_stats(db: AsyncSession = Depends(get_db)):
    """Platform wide comment statistics."""
    try:
        return success_response({"stats": await comment_stats(db)})

    except Exception as e:
        logger.error(f"Error getting comment stats: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get comment statistics"
        )


@router.get("/post/{post_id}")
async def list_post_comments(
        post_id: int,
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=50),
        sort: str = Query("newest", pattern="^(newest|oldest)$"),
        current_user: Optional[User] = Depends(get_optional_user),
        db: AsyncSession = Depends(get_db)
):
    """List top-level comments of a post."""
    try:
        post_exists = await db.scalar(select(Post.id).filter(Post.id == post_id))
        if not post_exists:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Post not found"
            )

        filters = [
            Comment.post_id == post_id,
            Comment.parent_id.is_(None),
            Comment.is_deleted.is_(False),
        ]
        total = await db.scalar(select(func.count()).select_from(Comment).filter(*filters))
        result = await db.execute(
            select(Comment)
            .filter(*filters)
            .order_by(*_comment_order(sort))
            .offset((page - 1) * limit)
            .limit(limit)
        )

        return success_response({
            "comments": await serialize_comments(db, result.scalars().all(), current_user),
            "pagination": build_pagination(page, limit, total, "Comments"),
        })

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing comments for post {post_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch comments"
        )


@router.get("/{comment_id}/replies")
async def list_replies(
        comment_id: int,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=50),
        sort: str = Query("oldest", pattern="^(newest|oldest)$"),
        current_user: Optional[User] = Depends(get_optional_user),
        db: AsyncSession = Depends(get_db)
):
    """List live replies to a comment."""
    try:
        parent_exists = await db.scalar(select(Comment.id).filter(Comment.id == comment_id))
        if not parent_exists:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Parent comment not found"
            )

        filters = [Comment.parent_id == comment_id, Comment.is_deleted.is_(False)]
        total = await db.scalar(select(func.count()).select_from(Comment).filter(*filters))
        result = await db.execute(
            select(Comment)
            .filter(*filters)
            .order_by(*_comment_order(sort))
            .offset((page - 1) * limit)
            .limit(limit)
        )

        return success_response({
            "replies": await serialize_comments(db, result.scalars().all(), current_user),
            "pagination": build_pagination(page, limit, total, "Replies"),
        })

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing replies for comment {comment_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch replies"
        )


@router.post("/post/{post_id}", status_code=status.HTTP_201_CREATED)
async def create_comment(
        post_id: int,
        comment_data: CommentCreate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Comment on a post or reply to a top-level comment."""
    try:
        post = await db.scalar(select(Post).filter(Post.id == post_id))
        if not post:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Post not found"
            )
        if not post.published:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Cannot comment on unpublished post"
            )

        if comment_data.parent is not None:
            parent = await db.scalar(select(Comment).filter(Comment.id == comment_data.parent))
            if not parent or parent.is_deleted:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Parent comment not found"
                )
            if parent.post_id != post_id:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Parent comment does not belong to this post"
                )
            if parent.parent_id is not None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Replies can only be added to top-level comments"
                )

        body = _clean_body(comment_data.body)

        await comment_flood_protection.check_rate_limit(current_user.id, db)

        comment = Comment(
            post_id=post_id,
            author=current_user,
            content=body,
            parent_id=comment_data.parent,
        )
        db.add(comment)
        await db.flush()

        if comment.parent_id is None:
            await increment_counter(db, Post, post_id, "comments_count")
        else:
            await recount_counter(db, Comment, comment.parent_id, "replies_count",
                                  _replies_count_query(comment.parent_id))
        await db.commit()

        data = await serialize_comments(db, [comment])
        return success_response({"comment": data[0]}, message="Comment created successfully")

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error creating comment on post {post_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create comment"
        )


@router.put("/{comment_id}")
async def update_comment(
        comment_id: int,
        comment_data: CommentUpdate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Edit a comment."""
    try:
        comment = await _get_live_comment(db, comment_id)
        require_owner_or_admin(current_user, comment)

        body = _clean_body(comment_data.body)

        comment.edit(body)
        await db.commit()

        data = await serialize_comments(db, [comment], current_user)
        return success_response({"comment": data[0]}, message="Comment updated successfully")

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error updating comment {comment_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update comment"
        )


@router.delete("/{comment_id}")
async def delete_comment(
        comment_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Soft delete a comment."""
    try:
        comment = await _get_live_comment(db, comment_id)
        require_owner_or_admin(current_user, comment)

        await soft_delete_comment(db, comment)
        await db.commit()

        return success_response(message="Comment deleted successfully")

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error deleting comment {comment_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete comment"
        )


@router.post("/{comment_id}/like")
async def toggle_comment_like(
        comment_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Like a comment, or remove the like if it is already there."""
    try:
        await _get_live_comment(db, comment_id)

        removed = await db.execute(
            delete(CommentLike)
            .where(CommentLike.user_id == current_user.id, CommentLike.comment_id == comment_id)
            .execution_options(synchronize_session=False)
        )
        is_liked = removed.rowcount == 0
        if is_liked:
            db.add(CommentLike(user_id=current_user.id, comment_id=comment_id))
            await db.flush()

        await recount_counter(
            db, Comment, comment_id, "likes_count",
            select(func.count(CommentLike.id)).filter(CommentLike.comment_id == comment_id)
        )
        likes_count = await db.scalar(select(Comment.likes_count).filter(Comment.id == comment_id))
        await db.commit()

        return success_response(
            LikeResult(is_liked=is_liked, likes_count=likes_count),
            message="Comment liked" if is_liked else "Comment unliked"
        )

    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Like is already being processed"
        )
    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error toggling like on comment {comment_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to toggle like"
        )
