from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import asc, case, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from blogify.models.comment import Comment
from blogify.models.post import Post
from blogify.models.user import User
from blogify.routes.comment import soft_delete_comment
from blogify.routes.post import delete_post_cascade, published_post_filters
from blogify.schemas.comment import ModeratedComment
from blogify.schemas.common import build_pagination
from blogify.schemas.post import PostStatusUpdate, validate_publishable
from blogify.schemas.user import AdminUserItem, AuthorSummary, RoleUpdate, UserResponse
from blogify.token_store import token_store
from blogify.utils.image_storage import ImageStorage, get_image_storage
from blogify.utils.queries import comment_stats, post_order_by, post_stats, serialize_posts
from blogify.utils.responses import success_response
from database import utcnow
from dependencies import get_db, logger, require_admin

router = APIRouter()

USER_SORT_FIELDS = {
    "createdAt": User.created_at,
    "name": User.name,
    "email": User.email,
    "lastLogin": User.last_login,
}


def _user_order_by(sort: Optional[str]):
    sort = sort or "-createdAt"
    column = USER_SORT_FIELDS.get(sort.lstrip("-"))
    if column is None:
        return [desc(User.created_at), desc(User.id)]
    direction = desc if sort.startswith("-") else asc
    return [direction(column), desc(User.id)]


async def _get_other_user(db: AsyncSession, user_id: int, admin: User, action: str) -> User:
    if user_id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot change your own {action}"
        )
    user = await db.scalar(select(User).filter(User.id == user_id))
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user


@router.get("/stats")
async def get_admin_stats(
        admin: User = Depends(require_admin),
        db: AsyncSession = Depends(get_db)
):
    """Platform overview, 30 day activity and top authors."""
    try:
        users_row = (await db.execute(
            select(
                func.count(User.id),
                func.coalesce(func.sum(case((User.is_active.is_(True), 1), else_=0)), 0),
                func.coalesce(func.sum(case((User.role == "admin", 1), else_=0)), 0),
            )
        )).one()

        since = utcnow() - timedelta(days=30)
        new_users = await db.scalar(select(func.count(User.id)).filter(User.created_at >= since))
        new_posts = await db.scalar(select(func.count(Post.id)).filter(Post.created_at >= since))
        new_comments = await db.scalar(select(func.count(Comment.id)).filter(Comment.created_at >= since))

        post_count = func.count(Post.id).label("post_count")
        top_rows = (await db.execute(
            select(
                User,
                post_count,
                func.coalesce(func.sum(Post.view_count), 0),
                func.coalesce(func.sum(Post.likes_count), 0),
            )
            .join(Post, Post.author_id == User.id)
            .filter(Post.published.is_(True))
            .group_by(User.id)
            .order_by(desc(post_count), asc(User.id))
            .limit(5)
        )).all()

        top_authors = [
            {
                "author": AuthorSummary.model_validate(user),
                "postCount": count,
                "totalViews": views,
                "totalLikes": likes,
            }
            for user, count, views, likes in top_rows
        ]

        return success_response({
            "overview": {
                "users": {
                    "totalUsers": users_row[0],
                    "activeUsers": users_row[1],
                    "admins": users_row[2],
                },
                "posts": await post_stats(db),
                "comments": await comment_stats(db),
            },
            "recentActivity": {
                "newUsers": new_users,
                "newPosts": new_posts,
                "newComments": new_comments,
            },
            "topAuthors": top_authors,
        })

    except Exception as e:
        logger.error(f"Error fetching admin stats: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch admin statistics"
        )


@router.get("/users")
async def list_users(
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        search: Optional[str] = None,
        role: Optional[str] = Query(None, pattern="^(user|admin)$"),
        is_active: Optional[bool] = Query(None, alias="isActive"),
        sort: str = "-createdAt",
        admin: User = Depends(require_admin),
        db: AsyncSession = Depends(get_db)
):
    """List all users with their post totals."""
    try:
        filters = []
        if search:
            term = f"%{search.strip()}%"
            filters.append(or_(User.name.ilike(term), User.email.ilike(term)))
        if role:
            filters.append(User.role == role)
        if is_active is not None:
            filters.append(User.is_active.is_(is_active))

        total = await db.scalar(select(func.count()).select_from(User).filter(*filters))
        users = (await db.execute(
            select(User)
            .filter(*filters)
            .order_by(*_user_order_by(sort))
            .offset((page - 1) * limit)
            .limit(limit)
        )).scalars().all()

        stats_by_author = {}
        if users:
            rows = (await db.execute(
                select(
                    Post.author_id,
                    func.count(Post.id),
                    func.coalesce(func.sum(case((Post.published.is_(True), 1), else_=0)), 0),
                    func.coalesce(func.sum(Post.view_count), 0),
                    func.coalesce(func.sum(Post.likes_count), 0),
                )
                .filter(Post.author_id.in_([user.id for user in users]))
                .group_by(Post.author_id)
            )).all()
            stats_by_author = {
                author_id: {
                    "totalPosts": count,
                    "publishedPosts": published,
                    "totalViews": views,
                    "totalLikes": likes,
                }
                for author_id, count, published, views, likes in rows
            }

        empty = {"totalPosts": 0, "publishedPosts": 0, "totalViews": 0, "totalLikes": 0}
        items = []
        for user in users:
            item = AdminUserItem.model_validate(user)
            item.stats = stats_by_author.get(user.id, empty)
            items.append(item)

        return success_response({
            "users": items,
            "pagination": build_pagination(page, limit, total, "Users"),
        })

    except Exception as e:
        logger.error(f"Error listing users: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch users"
        )


@router.put("/users/{user_id}/role")
async def update_user_role(
        user_id: int,
        role_update: RoleUpdate,
        admin: User = Depends(require_admin),
        db: AsyncSession = Depends(get_db)
):
    """Promote or demote a user."""
    try:
        user = await _get_other_user(db, user_id, admin, "role")
        user.role = role_update.role
        await db.commit()

        logger.info(f"Admin {admin.id} set role of user {user.id} to {user.role}")
        return success_response(
            {"user": UserResponse.model_validate(user)},
            message=f"User role updated to {user.role}"
        )

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error updating role of user {user_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update user role"
        )


@router.put("/users/{user_id}/status")
async def toggle_user_status(
        user_id: int,
        admin: User = Depends(require_admin),
        db: AsyncSession = Depends(get_db)
):
    """Activate or deactivate a user; deactivation ends all of their sessions."""
    try:
        user = await _get_other_user(db, user_id, admin, "account status")
        user.is_active = not user.is_active
        if not user.is_active:
            await token_store.remove_all(db, user.id)
        await db.commit()

        state = "activated" if user.is_active else "deactivated"
        logger.info(f"Admin {admin.id} {state} user {user.id}")
        return success_response(
            {"user": UserResponse.model_validate(user)},
            message=f"User account {state}"
        )

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error updating status of user {user_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update user status"
        )


@router.get("/posts")
async def list_posts_for_moderation(
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        search: Optional[str] = None,
        author: Optional[int] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = Query(None),
        published: Optional[bool] = None,
        featured: Optional[bool] = None,
        sort: str = "-createdAt",
        admin: User = Depends(require_admin),
        db: AsyncSession = Depends(get_db)
):
    """List every post, drafts included."""
    try:
        filters = published_post_filters(search, author, category, tags, featured)
        if published is not None:
            filters.append(Post.published.is_(published))

        total = await db.scalar(select(func.count()).select_from(Post).filter(*filters))
        posts = (await db.execute(
            select(Post)
            .filter(*filters)
            .order_by(*post_order_by(sort))
            .offset((page - 1) * limit)
            .limit(limit)
        )).scalars().all()

        return success_response({
            "posts": await serialize_posts(db, posts, admin),
            "pagination": build_pagination(page, limit, total, "Posts"),
        })

    except Exception as e:
        logger.error(f"Error listing posts for moderation: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch posts for moderation"
        )


@router.put("/posts/{post_id}/status")
async def update_post_status(
        post_id: int,
        status_update: PostStatusUpdate,
        admin: User = Depends(require_admin),
        db: AsyncSession = Depends(get_db)
):
    """Publish, unpublish, feature or unfeature a post."""
    try:
        post = await db.scalar(select(Post).filter(Post.id == post_id))
        if not post:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Post not found"
            )

        if status_update.published is not None:
            if status_update.published and not post.published:
                try:
                    validate_publishable(post.content_html, post.content_delta)
                except ValueError as e:
                    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
            post.published = status_update.published
        if status_update.featured is not None:
            post.featured = status_update.featured
        await db.commit()

        data = await serialize_posts(db, [post], admin)
        return success_response({"post": data[0]}, message="Post status updated successfully")

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error updating status of post {post_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update post status"
        )


@router.delete("/posts/{post_id}")
async def delete_post_as_admin(
        post_id: int,
        admin: User = Depends(require_admin),
        db: AsyncSession = Depends(get_db),
        storage: ImageStorage = Depends(get_image_storage)
):
    """Remove any post."""
    try:
        post = await db.scalar(select(Post).filter(Post.id == post_id))
        if not post:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Post not found"
            )

        cover_image = post.cover_image
        await delete_post_cascade(db, post.id)
        await db.commit()

        if cover_image:
            await storage.delete_image(cover_image)

        logger.info(f"Admin {admin.id} deleted post {post_id}")
        return success_response(message="Post deleted successfully")

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error deleting post {post_id} as admin: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete post"
        )


@router.get("/comments")
async def list_comments_for_moderation(
        page: int = Query(1, ge=1),
        limit: int = Query(50, ge=1, le=100),
        author: Optional[int] = None,
        post: Optional[int] = None,
        is_deleted: Optional[bool] = Query(None, alias="isDeleted"),
        sort: str = Query("-createdAt", pattern="^-?createdAt$"),
        admin: User = Depends(require_admin),
        db: AsyncSession = Depends(get_db)
):
    """List comments of every post, soft deleted ones included."""
    try:
        filters = []
        if author is not None:
            filters.append(Comment.author_id == author)
        if post is not None:
            filters.append(Comment.post_id == post)
        if is_deleted is not None:
            filters.append(Comment.is_deleted.is_(is_deleted))

        direction = desc if sort.startswith("-") else asc
        total = await db.scalar(select(func.count()).select_from(Comment).filter(*filters))
        rows = (await db.execute(
            select(Comment, Post.title, Post.slug)
            .join(Post, Post.id == Comment.post_id)
            .filter(*filters)
            .order_by(direction(Comment.created_at), direction(Comment.id))
            .offset((page - 1) * limit)
            .limit(limit)
        )).all()

        items = []
        for comment, title, slug in rows:
            item = ModeratedComment.model_validate(comment)
            item.post_title = title
            item.post_slug = slug
            items.append(item)

        return success_response({
            "comments": items,
            "pagination": build_pagination(page, limit, total, "Comments"),
        })

    except Exception as e:
        logger.error(f"Error listing comments for moderation: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch comments for moderation"
        )


@router.delete("/comments/{comment_id}")
async def delete_comment_as_admin(
        comment_id: int,
        admin: User = Depends(require_admin),
        db: AsyncSession = Depends(get_db)
):
    """Soft delete any comment."""
    try:
        comment = await db.scalar(select(Comment).filter(Comment.id == comment_id))
        if not comment or comment.is_deleted:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Comment not found"
            )

        await soft_delete_comment(db, comment)
        await db.commit()

        logger.info(f"Admin {admin.id} deleted comment {comment_id}")
        return success_response(message="Comment deleted successfully")

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error deleting comment {comment_id} as admin: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete comment"
        )
