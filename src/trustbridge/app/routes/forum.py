"""Community forum routes: categories, posts, comments and reactions."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.app.routes.auth import get_current_user_dep, get_optional_user_dep, require_role
from trustbridge.domain.models import User
from trustbridge.domain.schemas import (
    ForumCategoryCreate,
    ForumCategoryResponse,
    ForumCommentWrite,
    ForumPostWrite,
)
from trustbridge.infra.database import get_db
from trustbridge.services.forum_service import (
    DEFAULT_COMMENT_PAGE,
    DEFAULT_POST_PAGE,
    add_comment,
    create_category,
    create_post,
    delete_comment,
    delete_post,
    get_post_detail,
    has_handshaked,
    has_liked_comment,
    has_liked_post,
    list_categories,
    list_comments,
    list_posts,
    serialize_comment,
    serialize_post,
    toggle_comment_like,
    toggle_handshake,
    toggle_post_like,
    update_comment,
    update_post,
)

router = APIRouter(prefix="/api/forum", tags=["forum"])


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


@router.get("/categories")
async def categories(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await list_categories(db)


@router.post("/categories", status_code=status.HTTP_201_CREATED)
async def add_category(
    data: ForumCategoryCreate,
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    return ForumCategoryResponse.model_validate(await create_category(db, data)).to_json()


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------


@router.get("/posts")
async def posts(
    category_id: Optional[str] = Query(None, alias="categoryId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    sort: str = "newest",
    limit: int = Query(DEFAULT_POST_PAGE),
    offset: int = Query(0),
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    items = await list_posts(
        db, category_id=category_id, user_id=user_id, sort=sort, limit=limit, offset=offset
    )
    return {"posts": items}


@router.post("/posts", status_code=status.HTTP_201_CREATED)
async def new_post(
    data: ForumPostWrite,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    post = await create_post(db, user, data)
    return serialize_post(post, {"id": user.id, "name": user.name})


@router.get("/posts/{post_id}")
async def get_post(
    post_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await get_post_detail(db, post_id)


@router.put("/posts/{post_id}")
async def edit_post(
    post_id: str,
    data: ForumPostWrite,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    post = await update_post(db, user, post_id, data)
    return serialize_post(post, {"id": user.id, "name": user.name})


@router.delete("/posts/{post_id}")
async def remove_post(
    post_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    await delete_post(db, user, post_id)
    return {"message": "Post deleted", "id": post_id}


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


@router.get("/posts/{post_id}/comments")
async def comments(
    post_id: str,
    limit: int = Query(DEFAULT_COMMENT_PAGE),
    offset: int = Query(0),
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await list_comments(db, post_id, limit=limit, offset=offset)


@router.post("/posts/{post_id}/comments", status_code=status.HTTP_201_CREATED)
async def new_comment(
    post_id: str,
    data: ForumCommentWrite,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await add_comment(db, user, post_id, data)


@router.put("/comments/{comment_id}")
async def edit_comment(
    comment_id: str,
    data: ForumCommentWrite,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    comment = await update_comment(db, user, comment_id, data)
    return serialize_comment(comment, {"id": user.id, "name": user.name})


@router.delete("/comments/{comment_id}")
async def remove_comment(
    comment_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    await delete_comment(db, user, comment_id)
    return {"message": "Comment deleted", "id": comment_id}


# ---------------------------------------------------------------------------
# Reactions
# ---------------------------------------------------------------------------


@router.post("/posts/{post_id}/like")
async def like_post(
    post_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await toggle_post_like(db, user, post_id)


@router.get("/posts/{post_id}/liked")
async def post_liked(
    post_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return {"liked": await has_liked_post(db, user, post_id)}


@router.post("/comments/{comment_id}/like")
async def like_comment(
    comment_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await toggle_comment_like(db, user, comment_id)


@router.get("/comments/{comment_id}/liked")
async def comment_liked(
    comment_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return {"liked": await has_liked_comment(db, user, comment_id)}


@router.post("/posts/{post_id}/handshake")
async def handshake(
    post_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await toggle_handshake(db, user, post_id)


@router.get("/posts/{post_id}/handshaked")
async def handshaked(
    post_id: str,
    user: Optional[User] = Depends(get_optional_user_dep),
    db: AsyncSession = Depends(get_db),
):
    # Anonymous visitors simply have not handshaked
    return {"handshaked": await has_handshaked(db, user, post_id)}
