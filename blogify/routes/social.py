from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import delete, desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blogify.models.post import Post
from blogify.models.social import Bookmark, UserFollow
from blogify.models.user import User
from blogify.schemas.common import build_pagination
from blogify.schemas.social import BookmarkResult, FollowResult
from blogify.schemas.user import UserListItem
from blogify.utils.queries import recount_counter, serialize_posts
from blogify.utils.responses import success_response
from dependencies import get_current_user, get_db, get_optional_user, logger

router = APIRouter()


async def _sync_follow_counters(db: AsyncSession, follower_id: int, followed_id: int):
    await recount_counter(
        db, User, follower_id, "following_count",
        select(func.count(UserFollow.id)).filter(UserFollow.follower_id == follower_id)
    )
    await recount_counter(
        db, User, followed_id, "followers_count",
        select(func.count(UserFollow.id)).filter(UserFollow.followed_id == followed_id)
    )


async def _get_active_user(db: AsyncSession, user_id: int, detail: str = "User not found") -> User:
    user = await db.scalar(select(User).filter(User.id == user_id))
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    return user


@router.post("/me/bookmarks/{post_id}")
async def toggle_bookmark(
        post_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Bookmark a post, or remove the bookmark if it is already there."""
    try:
        post_exists = await db.scalar(
            select(Post.id).filter(Post.id == post_id, Post.published.is_(True))
        )
        if not post_exists:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Post not found"
            )

        removed = await db.execute(
            delete(Bookmark)
            .where(Bookmark.user_id == current_user.id, Bookmark.post_id == post_id)
            .execution_options(synchronize_session=False)
        )
        is_bookmarked = removed.rowcount == 0
        if is_bookmarked:
            db.add(Bookmark(user_id=current_user.id, post_id=post_id))
        await db.commit()

        return success_response(BookmarkResult(
            is_bookmarked=is_bookmarked,
            action="bookmarked" if is_bookmarked else "unbookmarked",
        ))

    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Bookmark is already being processed"
        )
    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error toggling bookmark on post {post_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to toggle bookmark"
        )


@router.get("/me/bookmarks")
async def get_my_bookmarks(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=50),
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Get the caller's bookmarked published posts, most recently saved first."""
    try:
        filters = [Bookmark.user_id == current_user.id, Post.published.is_(True)]
        total = await db.scalar(
            select(func.count(Bookmark.id)).join(Post, Post.id == Bookmark.post_id).filter(*filters)
        )
        result = await db.execute(
            select(Post)
            .join(Bookmark, Bookmark.post_id == Post.id)
            .filter(*filters)
            .order_by(desc(Bookmark.created_at), desc(Bookmark.id))
            .offset((page - 1) * limit)
            .limit(limit)
        )

        return success_response({
            "posts": await serialize_posts(db, result.scalars().all(), current_user),
            "pagination": build_pagination(page, limit, total, "Posts"),
        })

    except Exception as e:
        logger.error(f"Error fetching bookmarks for user {current_user.id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch bookmarks"
        )


@router.post("/{user_id}/follow")
async def follow_user(
        user_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Follow another user."""
    try:
        if user_id == current_user.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot follow yourself"
            )
        target = await _get_active_user(db, user_id, "User to follow not found")

        already = await db.scalar(
            select(UserFollow.id).filter(
                UserFollow.follower_id == current_user.id,
                UserFollow.followed_id == user_id
            )
        )
        if not already:
            db.add(UserFollow(follower_id=current_user.id, followed_id=user_id))
            await db.flush()
            await _sync_follow_counters(db, current_user.id, user_id)

        followers_count = await db.scalar(select(User.followers_count).filter(User.id == user_id))
        await db.commit()

        return success_response(
            FollowResult(is_following=True, followers_count=followers_count),
            message=f"Now following {target.name}"
        )

    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Follow is already being processed"
        )
    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error following user {user_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to follow user"
        )


@router.delete("/{user_id}/follow")
async def unfollow_user(
        user_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Stop following a user."""
    try:
        target = await db.scalar(select(User).filter(User.id == user_id))
        if not target:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="User to unfollow not found"
            )

        removed = await db.execute(
            delete(UserFollow)
            .where(UserFollow.follower_id == current_user.id, UserFollow.followed_id == user_id)
            .execution_options(synchronize_session=False)
        )
        if removed.rowcount:
            await _sync_follow_counters(db, current_user.id, user_id)

        followers_count = await db.scalar(select(User.followers_count).filter(User.id == user_id))
        await db.commit()

        return success_response(
            FollowResult(is_following=False, followers_count=followers_count),
            message=f"Unfollowed {target.name}"
        )

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error unfollowing user {user_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to unfollow user"
        )


async def _list_follow_edges(db, user_id, page, limit, viewer, followers: bool):
    await _get_active_user(db, user_id)

    if followers:
        edge_filter = UserFollow.followed_id == user_id
        join_on = UserFollow.follower_id == User.id
    else:
        edge_filter = UserFollow.follower_id == user_id
        join_on = UserFollow.followed_id == User.id

    total = await db.scalar(select(func.count(UserFollow.id)).filter(edge_filter))
    result = await db.execute(
        select(User)
        .join(UserFollow, join_on)
        .filter(edge_filter)
        .order_by(desc(UserFollow.created_at), desc(UserFollow.id))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    users = result.scalars().all()

    followed_by_viewer = set()
    if viewer is not None and users:
        followed_by_viewer = set((await db.execute(
            select(UserFollow.followed_id).filter(
                UserFollow.follower_id == viewer.id,
                UserFollow.followed_id.in_([user.id for user in users])
            )
        )).scalars().all())

    items = []
    for user in users:
        item = UserListItem.model_validate(user)
        item.is_following = user.id in followed_by_viewer
        items.append(item)
    return items, total


@router.get("/{user_id}/followers")
async def get_followers(
        user_id: int,
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=50),
        current_user=Depends(get_optional_user),
        db: AsyncSession = Depends(get_db)
):
    """Get users following the given user."""
    try:
        items, total = await _list_follow_edges(db, user_id, page, limit, current_user, followers=True)
        return success_response({
            "followers": items,
            "pagination": build_pagination(page, limit, total, "Followers"),
        })
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching followers of user {user_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch followers"
        )


@router.get("/{user_id}/following")
async def get_following(
        user_id: int,
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=50),
        current_user=Depends(get_optional_user),
        db: AsyncSession = Depends(get_db)
):
    """Get users the given user follows."""
    try:
        items, total = await _list_follow_edges(db, user_id, page, limit, current_user, followers=False)
        return success_response({
            "following": items,
            "pagination": build_pagination(page, limit, total, "Following"),
        })
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching users followed by {user_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch following"
        )
