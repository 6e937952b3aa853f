from collections import Counter
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile, status
from sqlalchemy import case, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from blogify.models.post import Post
from blogify.models.user import User
from blogify.schemas.common import build_pagination
from blogify.schemas.user import AuthorSummary, DeactivateAccount, ProfileUpdate, UserPublic, UserResponse
from blogify.token_store import token_store
from blogify.utils.image_storage import ImageStorage, ImageUploadError, ImageValidationError, get_image_storage
from blogify.utils.queries import post_order_by, serialize_posts
from blogify.utils.responses import success_response
from blogify.utils.sanitization import normalize_text
from blogify.utils.security import clear_refresh_cookie, verify_password
from database import utcnow
from dependencies import get_current_user, get_db, get_optional_user, logger

router = APIRouter()


async def post_totals(db: AsyncSession, author_id: int, published_only: bool = True) -> dict:
    filters = [Post.author_id == author_id]
    if published_only:
        filters.append(Post.published.is_(True))
    row = (await db.execute(
        select(
            func.count(Post.id),
            func.coalesce(func.sum(Post.view_count), 0),
            func.coalesce(func.sum(Post.likes_count), 0),
            func.coalesce(func.sum(Post.comments_count), 0),
        ).filter(*filters)
    )).one()
    return {
        "totalPosts": row[0],
        "totalViews": row[1],
        "totalLikes": row[2],
        "totalComments": row[3],
    }


@router.get("/search")
async def search_users(
        query: str = Query(""),
        limit: int = Query(10, ge=1, le=50),
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Find active users by name or email."""
    query = normalize_text(query)
    if len(query) < 2:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Search query must be at least 2 characters long"
        )

    try:
        term = f"%{query}%"
        result = await db.execute(
            select(User)
            .filter(User.is_active.is_(True), or_(User.name.ilike(term), User.email.ilike(term)))
            .order_by(User.name)
            .limit(limit)
        )
        users = [AuthorSummary.model_validate(user) for user in result.scalars().all()]
        return success_response({"users": users})

    except Exception as e:
        logger.error(f"Error searching users: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to search users"
        )


@router.get("/me")
async def read_users_me(current_user: User = Depends(get_current_user)):
    return success_response({"user": UserResponse.model_validate(current_user)})


@router.put("/me")
async def update_users_me(
        name: Optional[str] = Form(None),
        bio: Optional[str] = Form(None),
        avatar: Optional[UploadFile] = File(None),
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        storage: ImageStorage = Depends(get_image_storage)
):
    """Update name, bio and avatar of the current user."""
    changes = ProfileUpdate(name=name, bio=bio)

    try:
        if changes.name is not None:
            current_user.name = changes.name
        if changes.bio is not None:
            current_user.bio = changes.bio

        if avatar is not None and avatar.filename:
            try:
                uploaded = await storage.upload_avatar(await avatar.read(), current_user.id)
            except (ImageValidationError, ImageUploadError) as e:
                logger.error(f"Avatar upload error for user {current_user.id}: {str(e)}")
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Failed to upload avatar image"
                )
            old_avatar = current_user.avatar_url
            current_user.avatar_url = uploaded["url"]
            if old_avatar:
                await storage.delete_image(old_avatar)

        await db.commit()
        return success_response(
            {"user": UserResponse.model_validate(current_user)},
            message="Profile updated successfully"
        )

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error updating profile of user {current_user.id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update profile"
        )


@router.delete("/me")
async def deactivate_account(
        payload: DeactivateAccount,
        response: Response,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Deactivate the current account and end all of its sessions."""
    try:
        if not verify_password(payload.password, current_user.password_hash):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid password"
            )

        current_user.is_active = False
        await token_store.remove_all(db, current_user.id)
        await db.commit()

        clear_refresh_cookie(response)
        logger.info(f"User {current_user.id} deactivated their account")
        return success_response(message="Account deactivated successfully")

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error deactivating user {current_user.id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to deactivate account"
        )


@router.get("/me/posts")
async def get_my_posts(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=50),
        published: Optional[bool] = None,
        sort: str = "-createdAt",
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Get the caller's posts, drafts included."""
    try:
        filters = [Post.author_id == current_user.id]
        if published is not None:
            filters.append(Post.published.is_(published))

        total = await db.scalar(select(func.count()).select_from(Post).filter(*filters))
        result = await db.execute(
            select(Post)
            .filter(*filters)
            .order_by(*post_order_by(sort))
            .offset((page - 1) * limit)
            .limit(limit)
        )

        return success_response({
            "posts": await serialize_posts(db, result.scalars().all(), current_user),
            "pagination": build_pagination(page, limit, total, "Posts"),
        })

    except Exception as e:
        logger.error(f"Error fetching posts of user {current_user.id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch your posts"
        )


@router.get("/me/dashboard")
async def get_my_dashboard(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=50),
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Profile, posts and published totals of the caller in one call."""
    try:
        filters = [Post.author_id == current_user.id]
        total = await db.scalar(select(func.count()).select_from(Post).filter(*filters))
        result = await db.execute(
            select(Post)
            .filter(*filters)
            .order_by(desc(Post.created_at), desc(Post.id))
            .offset((page - 1) * limit)
            .limit(limit)
        )

        return success_response({
            "user": UserResponse.model_validate(current_user),
            "posts": await serialize_posts(db, result.scalars().all(), current_user),
            "stats": await post_totals(db, current_user.id),
            "pagination": build_pagination(page, limit, total, "Posts"),
        })

    except Exception as e:
        logger.error(f"Error fetching dashboard of user {current_user.id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch dashboard"
        )


@router.get("/me/stats")
async def get_my_stats(
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Dashboard statistics: totals, recent posts and posts per month."""
    try:
        row = (await db.execute(
            select(
                func.count(Post.id),
                func.coalesce(func.sum(case((Post.published.is_(True), 1), else_=0)), 0),
                func.coalesce(func.sum(case((Post.published.is_(False), 1), else_=0)), 0),
                func.coalesce(func.sum(Post.view_count), 0),
                func.coalesce(func.sum(Post.likes_count), 0),
                func.coalesce(func.sum(Post.comments_count), 0),
            ).filter(Post.author_id == current_user.id)
        )).one()
        stats = {
            "totalPosts": row[0],
            "publishedPosts": row[1],
            "draftPosts": row[2],
            "totalViews": row[3],
            "totalLikes": row[4],
            "totalComments": row[5],
        }

        recent = (await db.execute(
            select(Post)
            .filter(Post.author_id == current_user.id)
            .order_by(desc(Post.created_at), desc(Post.id))
            .limit(5)
        )).scalars().all()

        six_months_ago = utcnow() - timedelta(days=183)
        created = (await db.execute(
            select(Post.created_at).filter(
                Post.author_id == current_user.id,
                Post.created_at >= six_months_ago
            )
        )).scalars().all()
        per_month = Counter((stamp.year, stamp.month) for stamp in created)
        posts_by_month = [
            {"year": year, "month": month, "count": count}
            for (year, month), count in sorted(per_month.items())
        ]

        return success_response({
            "stats": stats,
            "recentPosts": await serialize_posts(db, recent, current_user),
            "postsByMonth": posts_by_month,
        })

    except Exception as e:
        logger.error(f"Error fetching stats of user {current_user.id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch dashboard statistics"
        )


@router.get("/{user_id}")
async def get_user_profile(
        user_id: int,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=50),
        current_user: Optional[User] = Depends(get_optional_user),
        db: AsyncSession = Depends(get_db)
):
    """Public profile with published posts and totals."""
    try:
        user = await db.scalar(select(User).filter(User.id == user_id))
        if not user or not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="User not found"
            )

        filters = [Post.author_id == user_id, Post.published.is_(True)]
        total = await db.scalar(select(func.count()).select_from(Post).filter(*filters))
        result = await db.execute(
            select(Post)
            .filter(*filters)
            .order_by(desc(Post.created_at), desc(Post.id))
            .offset((page - 1) * limit)
            .limit(limit)
        )

        return success_response({
            "user": UserPublic.model_validate(user),
            "posts": await serialize_posts(db, result.scalars().all(), current_user),
            "stats": await post_totals(db, user_id),
            "pagination": build_pagination(page, limit, total, "Posts"),
        })

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching profile of user {user_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch user profile"
        )
