import json
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blogify.flood_protection import post_flood_protection
from blogify.models.comment import Comment
from blogify.models.post import Post, PostTag
from blogify.models.social import Bookmark, CommentLike, PostLike
from blogify.models.user import User
from blogify.schemas.common import build_pagination
from blogify.schemas.post import LikeResult, PostCreate, PostUpdate, parse_tags, validate_publishable
from blogify.utils.image_storage import ImageStorage, ImageUploadError, ImageValidationError, get_image_storage
from blogify.utils.permissions import require_owner_or_admin
from blogify.utils.queries import increment_view_count, post_order_by, post_stats, recount_counter, serialize_posts
from blogify.utils.responses import success_response
from blogify.utils.sanitization import (
    calculate_read_time,
    generate_excerpt,
    normalize_text,
    sanitize_delta,
    sanitize_post_content,
    slugify,
    validate_content_length,
)
from database import get_session_factory
from dependencies import get_current_user, get_db, get_optional_user, logger

router = APIRouter()


def _parse_delta(raw: Optional[str]):
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or unsafe content"
        )


def _clean_content(content_html: str, content_delta) -> tuple:
    html = sanitize_post_content(content_html)
    delta = sanitize_delta(content_delta)
    if delta is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or unsafe content"
        )
    if not validate_content_length(html):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Content exceeds maximum length"
        )
    return html, delta


def published_post_filters(
        search: Optional[str] = None,
        author: Optional[int] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
        featured: Optional[bool] = None,
) -> list:
    filters = []
    if author is not None:
        filters.append(Post.author_id == author)
    if category:
        filters.append(Post.category.ilike(f"%{category}%"))
    tag_list = parse_tags(tags)
    if tag_list:
        filters.append(Post.id.in_(
            select(PostTag.post_id).filter(or_(*[PostTag.name.ilike(f"%{tag}%") for tag in tag_list]))
        ))
    if featured is not None:
        filters.append(Post.featured == featured)
    if search:
        term = f"%{normalize_text(search)}%"
        filters.append(or_(
            Post.title.ilike(term),
            Post.excerpt.ilike(term),
            Post.category.ilike(term),
            Post.id.in_(select(PostTag.post_id).filter(PostTag.name.ilike(term))),
        ))
    return filters


async def delete_post_cascade(db: AsyncSession, post_id: int):
    """Remove a post together with everything that hangs off it."""
    comment_ids = select(Comment.id).filter(Comment.post_id == post_id)
    for statement in (
        delete(CommentLike).where(CommentLike.comment_id.in_(comment_ids)),
        delete(Comment).where(Comment.post_id == post_id),
        delete(PostLike).where(PostLike.post_id == post_id),
        delete(Bookmark).where(Bookmark.post_id == post_id),
        delete(PostTag).where(PostTag.post_id == post_id),
        delete(Post).where(Post.id == post_id),
    ):
        await db.execute(statement.execution_options(synchronize_session=False))


@router.get("")
async def list_posts(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=50),
        search: Optional[str] = None,
        author: Optional[int] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = Query(None),
        featured: Optional[bool] = None,
        sort: str = "-createdAt",
        current_user: Optional[User] = Depends(get_optional_user),
        db: AsyncSession = Depends(get_db)
):
    """List published posts with filtering, sorting, and pagination."""
    try:
        filters = [Post.published.is_(True)] + published_post_filters(search, author, category, tags, featured)

        total = await db.scalar(select(func.count()).select_from(Post).filter(*filters))
        result = await db.execute(
            select(Post)
            .filter(*filters)
            .order_by(*post_order_by(sort))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        posts = result.scalars().all()

        return success_response({
            "posts": await serialize_posts(db, posts, current_user),
            "pagination": build_pagination(page, limit, total, "Posts"),
        })

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing posts: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch posts"
        )


@router.get("/stats")
async def get_post_stats(db: AsyncSession = Depends(get_db)):
    """Platform wide post statistics."""
    try:
        return success_response({"stats": await post_stats(db)})

    except Exception as e:
        logger.error(f"Error getting post stats: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get post statistics"
        )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_post(
        title: str = Form(...),
        content_html: str = Form(..., alias="contentHtml"),
        content_delta: str = Form(..., alias="contentDelta"),
        excerpt: Optional[str] = Form(None),
        tags: Optional[List[str]] = Form(None),
        category: Optional[str] = Form(None),
        published: bool = Form(True),
        featured: bool = Form(False),
        cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        storage: ImageStorage = Depends(get_image_storage)
):
    """Create a new post."""
    post_data = PostCreate(
        title=title,
        excerpt=excerpt,
        content_delta=_parse_delta(content_delta),
        content_html=content_html,
        tags=parse_tags(tags),
        category=category,
        published=published,
        featured=featured,
    )

    try:
        await post_flood_protection.check_rate_limit(current_user.id, db)

        html, delta = _clean_content(post_data.content_html, post_data.content_delta)
        if post_data.published and not html:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid or unsafe content"
            )

        slug = slugify(post_data.title)
        cover_url = None
        if cover_image is not None and cover_image.filename:
            try:
                uploaded = await storage.upload_cover(await cover_image.read(), slug)
                cover_url = uploaded["url"]
            except (ImageValidationError, ImageUploadError) as e:
                logger.error(f"Cover image upload error: {str(e)}")
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Failed to upload cover image"
                )

        post = Post(
            title=post_data.title,
            slug=slug,
            excerpt=(post_data.excerpt or "").strip() or generate_excerpt(html),
            content_delta=delta,
            content_html=html,
            author=current_user,
            cover_image=cover_url,
            category=post_data.category,
            read_time=calculate_read_time(html),
            published=post_data.published,
            featured=post_data.featured and current_user.is_admin,
            tag_links=[PostTag(name=tag) for tag in post_data.tags],
        )
        db.add(post)
        await db.commit()

        logger.info(f"User {current_user.id} created post {post.id}")
        data = await serialize_posts(db, [post], current_user, detail=True)
        return success_response({"post": data[0]}, message="Post created successfully")

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error creating post: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create post"
        )


@router.post("/upload-image")
async def upload_image(
        image: UploadFile = File(...),
        current_user: User = Depends(get_current_user),
        storage: ImageStorage = Depends(get_image_storage)
):
    """Upload an image for use inside post content."""
    try:
        uploaded = await storage.upload_content_image(await image.read())
        return success_response(uploaded, message="Image uploaded successfully")
    except ImageValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"Error uploading image for user {current_user.id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload image"
        )


@router.get("/{slug}")
async def get_post(
        slug: str,
        background_tasks: BackgroundTasks,
        current_user: Optional[User] = Depends(get_optional_user),
        db: AsyncSession = Depends(get_db),
        session_factory=Depends(get_session_factory)
):
    """Get a published post, or one of the caller's own drafts."""
    try:
        post = await db.scalar(select(Post).filter(Post.slug == slug))
        if not post or (not post.published and (current_user is None or post.author_id != current_user.id)):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Post not found"
            )

        if post.published:
            background_tasks.add_task(increment_view_count, session_factory, post.id)

        data = await serialize_posts(db, [post], current_user, detail=True)
        return success_response({"post": data[0]})

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching post {slug}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch post"
        )


@router.put("/{post_id}")
async def update_post(
        post_id: int,
        title: Optional[str] = Form(None),
        content_html: Optional[str] = Form(None, alias="contentHtml"),
        content_delta: Optional[str] = Form(None, alias="contentDelta"),
        excerpt: Optional[str] = Form(None),
        tags: Optional[List[str]] = Form(None),
        category: Optional[str] = Form(None),
        published: Optional[bool] = Form(None),
        featured: Optional[bool] = Form(None),
        cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        storage: ImageStorage = Depends(get_image_storage)
):
    """Update a post owned by the caller (or any post for admins)."""
    changes = PostUpdate(
        title=title,
        excerpt=excerpt,
        content_delta=_parse_delta(content_delta),
        content_html=content_html,
        tags=parse_tags(tags) if tags is not None else None,
        category=category,
        published=published,
        featured=featured,
    )

    try:
        post = await db.scalar(select(Post).filter(Post.id == post_id))
        if not post:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Post not found"
            )
        require_owner_or_admin(current_user, post)

        if (changes.content_html is None) != (changes.content_delta is None):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="contentHtml and contentDelta must be sent together"
            )

        content_changed = False
        if changes.content_html is not None:
            html, delta = _clean_content(changes.content_html, changes.content_delta)
            content_changed = html != post.content_html
            post.content_html = html
            post.content_delta = delta
            post.read_time = calculate_read_time(html)

        if changes.published is not None:
            post.published = changes.published
        if post.published and (content_changed or changes.published):
            try:
                validate_publishable(post.content_html, post.content_delta)
            except ValueError as e:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

        if changes.title is not None and changes.title != post.title:
            post.title = changes.title
            post.slug = slugify(changes.title)
        if changes.excerpt is not None:
            post.excerpt = changes.excerpt.strip()
        elif content_changed:
            post.excerpt = generate_excerpt(post.content_html)
        if changes.tags is not None:
            post.tag_links = [PostTag(name=tag) for tag in changes.tags]
        if changes.category is not None:
            post.category = changes.category or None
        if changes.featured is not None and current_user.is_admin:
            post.featured = changes.featured

        if cover_image is not None and cover_image.filename:
            try:
                uploaded = await storage.upload_cover(await cover_image.read(), post.slug)
                old_cover = post.cover_image
                post.cover_image = uploaded["url"]
                if old_cover:
                    await storage.delete_image(old_cover)
            except (ImageValidationError, ImageUploadError) as e:
                logger.error(f"Cover image upload error for post {post.id}, keeping the old one: {str(e)}")

        await db.commit()

        data = await serialize_posts(db, [post], current_user, detail=True)
        return success_response({"post": data[0]}, message="Post updated successfully")

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error updating post {post_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update post"
        )


@router.delete("/{post_id}")
async def delete_post(
        post_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        storage: ImageStorage = Depends(get_image_storage)
):
    """Delete a post with its comments, likes, tags and bookmarks."""
    try:
        post = await db.scalar(select(Post).filter(Post.id == post_id))
        if not post:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Post not found"
            )
        require_owner_or_admin(current_user, post)

        cover_image = post.cover_image
        await delete_post_cascade(db, post.id)
        await db.commit()

        if cover_image:
            await storage.delete_image(cover_image)

        logger.info(f"User {current_user.id} deleted post {post_id}")
        return success_response(message="Post deleted successfully")

    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error deleting post {post_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete post"
        )


@router.post("/{post_id}/like")
async def toggle_post_like(
        post_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """Like a post, or remove the like if it is already there."""
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
                detail="Cannot like unpublished post"
            )

        removed = await db.execute(
            delete(PostLike)
            .where(PostLike.user_id == current_user.id, PostLike.post_id == post_id)
            .execution_options(synchronize_session=False)
        )
        is_liked = removed.rowcount == 0
        if is_liked:
            db.add(PostLike(user_id=current_user.id, post_id=post_id))
            await db.flush()

        await recount_counter(
            db, Post, post_id, "likes_count",
            select(func.count(PostLike.id)).filter(PostLike.post_id == post_id)
        )
        likes_count = await db.scalar(select(Post.likes_count).filter(Post.id == post_id))
        await db.commit()

        return success_response(
            LikeResult(is_liked=is_liked, likes_count=likes_count),
            message="Post liked" if is_liked else "Post unliked"
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
        logger.error(f"Error toggling like on post {post_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to toggle like"
        )
