"""
Feed service: posts and the enriched feed.

Design notes
------------
- Posts only store ``author_id``.  Author details and engagement lists
  are fetched from the profile and engagement services on every read and
  merged into the response; a sibling that is down yields empty values
  instead of an error.
- Enrichment fans out concurrently: one profile request per distinct
  author plus three engagement requests per post.
- Service functions flush but do not commit; the transaction boundary
  is owned by the ``get_db`` dependency in the router layer.
"""
import asyncio
import math

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.clients import ServiceClient, display_name
from campusnet.exceptions import InvalidRequest, PermissionDenied
from campusnet.models import Post
from campusnet.schemas import PaginatedResponse, PostCreate, PostUpdate
from campusnet.timeutils import isoformat


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _post_to_dict(post: Post) -> dict:
    return {
        "id": post.id,
        "author_id": post.author_id,
        "content": post.content,
        "type": post.type,
        "media": post.media or [],
        "visibility": post.visibility,
        "tags": post.tags or [],
        "mentions": post.mentions or [],
        "view_count": post.view_count,
        "is_pinned": post.is_pinned,
        "is_archived": post.is_archived,
        "created_at": isoformat(post.created_at),
        "updated_at": isoformat(post.updated_at),
    }


def author_details(profile: dict | None) -> dict | None:
    if not profile:
        return None
    return {
        "user_id": profile.get("user_id"),
        "name": display_name(profile),
        "title": profile.get("title", ""),
        "avatar": profile.get("avatar", ""),
        "role": profile.get("role"),
        "bio": profile.get("bio", ""),
    }


async def enrich_posts(posts: list[dict], client: ServiceClient) -> list[dict]:
    """Attach ``author_details`` and engagement lists to each serialised post."""
    if not posts:
        return posts
    profiles, engagement = await asyncio.gather(
        client.get_profiles(p["author_id"] for p in posts),
        asyncio.gather(*(client.get_engagement(p["id"]) for p in posts)),
    )
    for post, stats in zip(posts, engagement):
        post["author_details"] = author_details(profiles.get(post["author_id"]))
        post.update(stats)
    return posts


async def _paginate(db: AsyncSession, query, count_query, page: int, page_size: int, client: ServiceClient | None):
    total: int = (await db.execute(count_query)).scalar_one()
    result = await db.execute(
        query.order_by(Post.created_at.desc(), Post.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = [_post_to_dict(p) for p in result.scalars().all()]
    if client is not None:
        items = await enrich_posts(items, client)
    return PaginatedResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def list_posts(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    client: ServiceClient | None = None,
) -> PaginatedResponse:
    """Non-archived posts from everyone, newest first."""
    condition = Post.is_archived.is_(False)
    return await _paginate(
        db,
        select(Post).where(condition),
        select(func.count()).select_from(Post).where(condition),
        page, page_size, client,
    )


async def list_user_posts(
    db: AsyncSession,
    author_id: int,
    page: int = 1,
    page_size: int = 20,
    client: ServiceClient | None = None,
    include_archived: bool = False,
) -> PaginatedResponse:
    conditions = [Post.author_id == author_id]
    if not include_archived:
        conditions.append(Post.is_archived.is_(False))
    return await _paginate(
        db,
        select(Post).where(*conditions),
        select(func.count()).select_from(Post).where(*conditions),
        page, page_size, client,
    )


async def create_post(db: AsyncSession, author_id: int, data: PostCreate) -> dict:
    media = [m.model_dump() for m in data.media]
    if data.media_url:
        media.append({"type": data.media_type, "url": data.media_url, "caption": None})
    content = data.content.strip()
    if not content and not media:
        raise InvalidRequest("Post must have content or media", code="EMPTY_POST")

    post = Post(
        author_id=author_id,
        content=content,
        type=data.type,
        media=media,
        visibility=data.visibility,
        tags=data.tags,
        mentions=data.mentions,
    )
    db.add(post)
    await db.flush()
    return _post_to_dict(post)


async def get_post(db: AsyncSession, post_id: int, count_view: bool = True) -> dict | None:
    """
    Return one post, bumping its view counter unless *count_view* is False
    (sibling services read posts without counting as a view).
    """
    post = await db.get(Post, post_id)
    if post is None:
        return None
    if count_view:
        post.view_count += 1
        await db.flush()
    return _post_to_dict(post)


async def _owned_post(db: AsyncSession, post_id: int, user_id: int) -> Post | None:
    post = await db.get(Post, post_id)
    if post is None:
        return None
    if post.author_id != user_id:
        raise PermissionDenied("Not authorized to modify this post")
    return post


async def update_post(db: AsyncSession, post_id: int, user_id: int, data: PostUpdate) -> dict | None:
    """Partially update a post owned by *user_id*.  None when it does not exist."""
    post = await _owned_post(db, post_id, user_id)
    if post is None:
        return None
    update_data = data.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in update_data.items():
        setattr(post, field, value)
    if not (post.content or "").strip() and not post.media:
        raise InvalidRequest("Post must have content or media", code="EMPTY_POST")
    await db.flush()
    return _post_to_dict(post)


async def delete_post(db: AsyncSession, post_id: int, user_id: int) -> bool:
    post = await _owned_post(db, post_id, user_id)
    if post is None:
        return False
    await db.delete(post)
    await db.flush()
    return True


async def delete_user_posts(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(delete(Post).where(Post.author_id == user_id))
    return result.rowcount or 0
