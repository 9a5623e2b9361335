"""Community forum: categories, posts, comments, likes and handshakes.

Likes and handshakes are toggles. The marker row is the source of truth and
the ``*_count`` columns on posts and comments are moved by single UPDATEs in
the same transaction, clamped at zero on the way down.
"""

import logging
from typing import Optional

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.domain.models import (
    ForumCategory,
    ForumComment,
    ForumHandshake,
    ForumLike,
    ForumPost,
    User,
)
from trustbridge.domain.schemas import (
    ForumCategoryCreate,
    ForumCategoryResponse,
    ForumCommentResponse,
    ForumCommentWrite,
    ForumPostResponse,
    ForumPostWrite,
)
from trustbridge.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from trustbridge.services.transitions import utcnow

logger = logging.getLogger(__name__)

POST_SORTS = ("newest", "popular")
MAX_PAGE_SIZE = 100
DEFAULT_POST_PAGE = 20
DEFAULT_COMMENT_PAGE = 50

DEFAULT_CATEGORIES = [
    ("Business Strategy", "Growth plans, positioning and operating decisions"),
    ("Funding & Investment", "Financing acquisitions and raising capital"),
    ("Marketing", "Traffic, brand and customer acquisition"),
    ("Sales", "Pipelines, pricing and closing"),
    ("Technology", "Stacks, hosting and technical due diligence"),
    ("Legal & Compliance", "Contracts, IP transfer and regulation"),
]

_USER_ID_KEYS = {"userId", "user_id"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _reject_user_id(payload) -> None:
    if payload.extra_keys() & _USER_ID_KEYS:
        raise ValidationError(
            "User ID cannot be provided in request body", code="USER_ID_NOT_ALLOWED"
        )


def _clean_text(value: Optional[str], message: str, code: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(message, code=code)
    return value.strip()


def _check_page(limit: int, offset: int) -> int:
    if limit < 1:
        raise ValidationError("limit must be a positive integer", code="INVALID_LIMIT")
    if offset < 0:
        raise ValidationError("offset must be non-negative", code="INVALID_OFFSET")
    return min(limit, MAX_PAGE_SIZE)


async def _authors(db: AsyncSession, user_ids) -> dict[str, dict]:
    ids = set(user_ids)
    if not ids:
        return {}
    result = await db.execute(select(User.id, User.name).where(User.id.in_(ids)))
    return {row.id: {"id": row.id, "name": row.name} for row in result}


def serialize_post(post: ForumPost, author: Optional[dict] = None) -> dict:
    data = ForumPostResponse.model_validate(post).to_json()
    data["author"] = author
    return data


def serialize_comment(comment: ForumComment, author: Optional[dict] = None) -> dict:
    data = ForumCommentResponse.model_validate(comment).to_json()
    data["author"] = author
    return data


async def _ensure_category(db: AsyncSession, category_id: str) -> None:
    if not await db.get(ForumCategory, category_id):
        raise NotFoundError("Category not found", code="CATEGORY_NOT_FOUND")


async def get_post_or_404(db: AsyncSession, post_id: str) -> ForumPost:
    post = await db.get(ForumPost, post_id)
    if not post:
        raise NotFoundError("Post not found", code="POST_NOT_FOUND")
    return post


async def get_comment_or_404(db: AsyncSession, comment_id: str) -> ForumComment:
    comment = await db.get(ForumComment, comment_id)
    if not comment:
        raise NotFoundError("Comment not found", code="COMMENT_NOT_FOUND")
    return comment


def _ensure_author(row, user: User, noun: str, verb: str) -> None:
    if row.user_id != user.id:
        raise AuthorizationError(
            f"You are not authorized to {verb} this {noun}", code="NOT_AUTHORIZED"
        )


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


async def list_categories(db: AsyncSession) -> list[dict]:
    result = await db.execute(select(ForumCategory).order_by(ForumCategory.name.asc()))
    return [ForumCategoryResponse.model_validate(c).to_json() for c in result.scalars().all()]


async def create_category(db: AsyncSession, payload: ForumCategoryCreate) -> ForumCategory:
    name = _clean_text(payload.name, "Category name is required", "MISSING_NAME")
    existing = await db.scalar(select(ForumCategory.id).where(ForumCategory.name == name))
    if existing:
        raise ConflictError(f"Category '{name}' already exists", code="CATEGORY_EXISTS")

    category = ForumCategory(name=name, description=(payload.description or "").strip() or None)
    db.add(category)
    await db.commit()
    await db.refresh(category)
    return category


async def seed_default_categories(db: AsyncSession) -> int:
    """Insert any missing default categories. Returns how many were added."""
    result = await db.execute(select(ForumCategory.name))
    present = set(result.scalars().all())
    added = 0
    for name, description in DEFAULT_CATEGORIES:
        if name in present:
            continue
        db.add(ForumCategory(name=name, description=description))
        added += 1
    if added:
        await db.commit()
        logger.info("Seeded %d forum categories", added)
    return added


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------


async def list_posts(
    db: AsyncSession,
    category_id: Optional[str] = None,
    user_id: Optional[str] = None,
    sort: str = "newest",
    limit: int = DEFAULT_POST_PAGE,
    offset: int = 0,
) -> list[dict]:
    """Posts with their author, newest first or by likes ("popular")."""
    if sort not in POST_SORTS:
        raise ValidationError(
            f"Invalid sort. Must be one of: {', '.join(POST_SORTS)}", code="INVALID_SORT"
        )
    limit = _check_page(limit, offset)

    query = select(ForumPost)
    if category_id:
        query = query.where(ForumPost.category_id == category_id)
    if user_id:
        query = query.where(ForumPost.user_id == user_id)
    if sort == "popular":
        query = query.order_by(ForumPost.likes_count.desc(), ForumPost.created_at.desc())
    else:
        query = query.order_by(ForumPost.created_at.desc())

    result = await db.execute(query.limit(limit).offset(offset))
    posts = list(result.scalars().all())
    authors = await _authors(db, (p.user_id for p in posts))
    return [serialize_post(p, authors.get(p.user_id)) for p in posts]


async def get_post_detail(db: AsyncSession, post_id: str) -> dict:
    post = await get_post_or_404(db, post_id)
    authors = await _authors(db, [post.user_id])
    data = serialize_post(post, authors.get(post.user_id))

    category = await db.get(ForumCategory, post.category_id) if post.category_id else None
    data["category"] = (
        {"id": category.id, "name": category.name, "description": category.description}
        if category else None
    )
    return data


async def create_post(db: AsyncSession, user: User, payload: ForumPostWrite) -> ForumPost:
    _reject_user_id(payload)
    title = _clean_text(payload.title, "Title is required", "MISSING_TITLE")
    content = _clean_text(payload.content, "Content is required", "MISSING_CONTENT")
    if payload.category_id:
        await _ensure_category(db, payload.category_id)

    now = utcnow()
    post = ForumPost(
        user_id=user.id,
        category_id=payload.category_id or None,
        title=title,
        content=content,
        likes_count=0,
        comments_count=0,
        handshakes_count=0,
        created_at=now,
        updated_at=now,
    )
    db.add(post)
    await db.commit()
    await db.refresh(post)

    logger.info("Forum post %s created by %s", post.id, user.id)
    return post


async def update_post(db: AsyncSession, user: User, post_id: str, payload: ForumPostWrite) -> ForumPost:
    _reject_user_id(payload)
    post = await get_post_or_404(db, post_id)
    _ensure_author(post, user, "post", "update")

    provided = payload.provided()
    if "title" in provided:
        post.title = _clean_text(payload.title, "Title must be a non-empty string", "INVALID_TITLE")
    if "content" in provided:
        post.content = _clean_text(
            payload.content, "Content must be a non-empty string", "INVALID_CONTENT"
        )
    if "category_id" in provided:
        if payload.category_id:
            await _ensure_category(db, payload.category_id)
        post.category_id = payload.category_id or None
    post.updated_at = utcnow()

    await db.commit()
    await db.refresh(post)
    return post


async def delete_post(db: AsyncSession, user: User, post_id: str) -> None:
    """Delete a post with its comments, likes and handshakes."""
    post = await get_post_or_404(db, post_id)
    _ensure_author(post, user, "post", "delete")

    comment_ids = select(ForumComment.id).where(ForumComment.post_id == post.id)
    await db.execute(delete(ForumLike).where(ForumLike.comment_id.in_(comment_ids)))
    await db.execute(delete(ForumLike).where(ForumLike.post_id == post.id))
    await db.execute(delete(ForumHandshake).where(ForumHandshake.post_id == post.id))
    await db.execute(delete(ForumComment).where(ForumComment.post_id == post.id))
    await db.delete(post)
    await db.commit()

    logger.info("Forum post %s deleted by %s", post_id, user.id)


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


async def list_comments(
    db: AsyncSession, post_id: str, limit: int = DEFAULT_COMMENT_PAGE, offset: int = 0
) -> list[dict]:
    await get_post_or_404(db, post_id)
    limit = _check_page(limit, offset)

    result = await db.execute(
        select(ForumComment)
        .where(ForumComment.post_id == post_id)
        .order_by(ForumComment.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    comments = list(result.scalars().all())
    authors = await _authors(db, (c.user_id for c in comments))
    return [serialize_comment(c, authors.get(c.user_id)) for c in comments]


async def add_comment(db: AsyncSession, user: User, post_id: str, payload: ForumCommentWrite) -> dict:
    _reject_user_id(payload)
    content = _clean_text(payload.content, "Content is required", "MISSING_CONTENT")
    post = await get_post_or_404(db, post_id)

    now = utcnow()
    comment = ForumComment(
        post_id=post.id,
        user_id=user.id,
        content=content,
        likes_count=0,
        created_at=now,
        updated_at=now,
    )
    db.add(comment)
    await db.execute(
        update(ForumPost)
        .where(ForumPost.id == post.id)
        .values({"comments_count": ForumPost.comments_count + 1, "updated_at": now})
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()
    await db.refresh(comment)
    await db.refresh(post)

    return serialize_comment(comment, {"id": user.id, "name": user.name})


async def update_comment(
    db: AsyncSession, user: User, comment_id: str, payload: ForumCommentWrite
) -> ForumComment:
    comment = await get_comment_or_404(db, comment_id)
    _ensure_author(comment, user, "comment", "update")

    if "content" in payload.provided():
        comment.content = _clean_text(
            payload.content, "Content must be a non-empty string", "INVALID_CONTENT"
        )
    comment.updated_at = utcnow()

    await db.commit()
    await db.refresh(comment)
    return comment


async def delete_comment(db: AsyncSession, user: User, comment_id: str) -> None:
    comment = await get_comment_or_404(db, comment_id)
    _ensure_author(comment, user, "comment", "delete")
    post = await db.get(ForumPost, comment.post_id)

    await db.execute(delete(ForumLike).where(ForumLike.comment_id == comment.id))
    await db.delete(comment)
    await db.execute(
        update(ForumPost)
        .where(ForumPost.id == comment.post_id)
        .values({
            "comments_count": case(
                (ForumPost.comments_count > 0, ForumPost.comments_count - 1), else_=0
            ),
            "updated_at": utcnow(),
        })
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()
    if post is not None:
        await db.refresh(post)


# ---------------------------------------------------------------------------
# Likes / handshakes
# ---------------------------------------------------------------------------


async def _toggle(db: AsyncSession, marker_model, marker: dict, target) -> bool:
    """Remove ``marker`` if present, otherwise add it, moving the target's counter.

    ``target`` is the post or comment row whose counter follows the marker;
    it is refreshed before returning. Returns True when the marker now exists.
    """
    counter_field = "handshakes_count" if marker_model is ForumHandshake else "likes_count"
    target_model = type(target)
    counter = getattr(target_model, counter_field)

    removed = await db.execute(
        delete(marker_model).where(*(getattr(marker_model, k) == v for k, v in marker.items()))
    )
    if removed.rowcount:
        new_value = case((counter > 0, counter - 1), else_=0)
        active = False
    else:
        db.add(marker_model(created_at=utcnow(), **marker))
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("Request already recorded, try again", code="CONCURRENT_UPDATE")
        new_value = counter + 1
        active = True

    await db.execute(
        update(target_model)
        .where(target_model.id == target.id)
        .values({counter_field: new_value})
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()
    await db.refresh(target)
    return active


async def toggle_post_like(db: AsyncSession, user: User, post_id: str) -> dict:
    post = await get_post_or_404(db, post_id)
    liked = await _toggle(db, ForumLike, {"post_id": post.id, "user_id": user.id}, post)
    return {"liked": liked, "likesCount": post.likes_count}


async def toggle_comment_like(db: AsyncSession, user: User, comment_id: str) -> dict:
    comment = await get_comment_or_404(db, comment_id)
    liked = await _toggle(db, ForumLike, {"comment_id": comment.id, "user_id": user.id}, comment)
    return {"liked": liked, "likesCount": comment.likes_count}


async def toggle_handshake(db: AsyncSession, user: User, post_id: str) -> dict:
    post = await get_post_or_404(db, post_id)
    handshaked = await _toggle(db, ForumHandshake, {"post_id": post.id, "user_id": user.id}, post)
    return {"handshaked": handshaked, "handshakesCount": post.handshakes_count}


async def has_liked_post(db: AsyncSession, user: User, post_id: str) -> bool:
    found = await db.scalar(
        select(ForumLike.id).where(ForumLike.post_id == post_id, ForumLike.user_id == user.id)
    )
    return found is not None


async def has_liked_comment(db: AsyncSession, user: User, comment_id: str) -> bool:
    found = await db.scalar(
        select(ForumLike.id).where(ForumLike.comment_id == comment_id, ForumLike.user_id == user.id)
    )
    return found is not None


async def has_handshaked(db: AsyncSession, user: Optional[User], post_id: str) -> bool:
    if user is None:
        return False
    found = await db.scalar(
        select(ForumHandshake.id).where(
            ForumHandshake.post_id == post_id, ForumHandshake.user_id == user.id
        )
    )
    return found is not None
