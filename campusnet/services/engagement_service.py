"""
Engagement service: reactions, threaded comments, comment likes and shares.

Design notes
------------
- A user holds at most one reaction per post; liking again changes the
  reaction type instead of adding a row.
- Comments are one level deep in practice (a reply points at its parent)
  but nothing stops deeper threads; deleting a comment removes its whole
  subtree and every like attached to it.
- Owner notifications are sent after the response by the router through
  ``BackgroundTasks``.  The helpers at the bottom of this module resolve
  the post owner and post text over HTTP and never raise.
"""
import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.clients import ServiceClient, display_name, truncate
from campusnet.exceptions import InvalidRequest, NotFound, PermissionDenied
from campusnet.models import Comment, CommentLike, Like, Share
from campusnet.schemas import CommentCreate
from campusnet.timeutils import isoformat

logger = logging.getLogger(__name__)

POST_SNIPPET_LENGTH = 50
COMMENT_SNIPPET_LENGTH = 30


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _like_to_dict(like: Like) -> dict:
    return {
        "id": like.id,
        "user_id": like.user_id,
        "post_id": like.post_id,
        "reaction_type": like.reaction_type,
        "created_at": isoformat(like.created_at),
    }


def _comment_to_dict(comment: Comment, likes_count: int = 0) -> dict:
    return {
        "id": comment.id,
        "user_id": comment.user_id,
        "post_id": comment.post_id,
        "content": comment.content,
        "parent_comment_id": comment.parent_id,
        "is_edited": comment.is_edited,
        "likes_count": likes_count,
        "created_at": isoformat(comment.created_at),
        "updated_at": isoformat(comment.updated_at),
    }


def _share_to_dict(share: Share) -> dict:
    return {
        "id": share.id,
        "user_id": share.user_id,
        "post_id": share.post_id,
        "message": share.message or "",
        "created_at": isoformat(share.created_at),
    }


def user_details(profile: dict | None) -> dict:
    if not profile:
        return {"name": "Unknown User", "avatar": None, "title": "User"}
    return {
        "name": display_name(profile),
        "avatar": profile.get("avatar"),
        "title": profile.get("title", ""),
    }


async def _likes_counts(db: AsyncSession, comment_ids: list[int]) -> dict[int, int]:
    if not comment_ids:
        return {}
    result = await db.execute(
        select(CommentLike.comment_id, func.count())
        .where(CommentLike.comment_id.in_(comment_ids))
        .group_by(CommentLike.comment_id)
    )
    return {comment_id: count for comment_id, count in result.all()}


async def _attach_user_details(comments: list[dict], client: ServiceClient | None) -> list[dict]:
    if client is None:
        return comments
    profiles = await client.get_profiles(c["user_id"] for c in comments)
    for comment in comments:
        comment["user_details"] = user_details(profiles.get(comment["user_id"]))
    return comments


async def _subtree_ids(db: AsyncSession, root_ids: list[int]) -> list[int]:
    """Return *root_ids* plus the ids of every reply beneath them."""
    collected = list(root_ids)
    frontier = list(root_ids)
    while frontier:
        result = await db.execute(select(Comment.id).where(Comment.parent_id.in_(frontier)))
        frontier = [row for row in result.scalars().all() if row not in collected]
        collected.extend(frontier)
    return collected


async def _delete_comments(db: AsyncSession, root_ids: list[int]) -> int:
    ids = await _subtree_ids(db, root_ids)
    if not ids:
        return 0
    await db.execute(delete(CommentLike).where(CommentLike.comment_id.in_(ids)))
    # Children first so the self-referencing FK is never violated.
    result = await db.execute(delete(Comment).where(Comment.id.in_(ids), Comment.parent_id.is_not(None)))
    removed = result.rowcount or 0
    result = await db.execute(delete(Comment).where(Comment.id.in_(ids)))
    return removed + (result.rowcount or 0)


# ---------------------------------------------------------------------------
# Likes
# ---------------------------------------------------------------------------

async def like_post(db: AsyncSession, user_id: int, post_id: int, reaction_type: str) -> tuple[dict, bool]:
    """Return ``(like, created)``; an existing like only has its reaction changed."""
    result = await db.execute(select(Like).where(Like.user_id == user_id, Like.post_id == post_id))
    like = result.scalar_one_or_none()
    if like is not None:
        like.reaction_type = reaction_type
        await db.flush()
        return _like_to_dict(like), False

    like = Like(user_id=user_id, post_id=post_id, reaction_type=reaction_type)
    db.add(like)
    await db.flush()
    return _like_to_dict(like), True


async def unlike_post(db: AsyncSession, user_id: int, post_id: int) -> bool:
    result = await db.execute(delete(Like).where(Like.user_id == user_id, Like.post_id == post_id))
    return bool(result.rowcount)


async def get_likes(db: AsyncSession, post_id: int) -> list[dict]:
    result = await db.execute(
        select(Like).where(Like.post_id == post_id).order_by(Like.created_at.desc(), Like.id.desc())
    )
    return [_like_to_dict(like) for like in result.scalars().all()]


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

async def create_comment(
    db: AsyncSession,
    user_id: int,
    post_id: int,
    data: CommentCreate,
    client: ServiceClient | None = None,
) -> dict:
    if data.parent_comment_id is not None:
        parent = await db.get(Comment, data.parent_comment_id)
        if parent is None:
            raise NotFound("Parent comment not found")
        if parent.post_id != post_id:
            raise InvalidRequest("Parent comment belongs to a different post", code="PARENT_MISMATCH")

    comment = Comment(
        user_id=user_id,
        post_id=post_id,
        content=data.content.strip(),
        parent_id=data.parent_comment_id,
    )
    db.add(comment)
    await db.flush()
    return (await _attach_user_details([_comment_to_dict(comment)], client))[0]


async def _owned_comment(db: AsyncSession, comment_id: int, user_id: int) -> Comment | None:
    comment = await db.get(Comment, comment_id)
    if comment is None:
        return None
    if comment.user_id != user_id:
        raise PermissionDenied("Not authorized")
    return comment


async def update_comment(db: AsyncSession, comment_id: int, user_id: int, content: str) -> dict | None:
    comment = await _owned_comment(db, comment_id, user_id)
    if comment is None:
        return None
    comment.content = content.strip()
    comment.is_edited = True
    await db.flush()
    counts = await _likes_counts(db, [comment.id])
    return _comment_to_dict(comment, counts.get(comment.id, 0))


async def delete_comment(db: AsyncSession, comment_id: int, user_id: int) -> bool:
    comment = await _owned_comment(db, comment_id, user_id)
    if comment is None:
        return False
    await _delete_comments(db, [comment.id])
    return True


async def get_comments(
    db: AsyncSession,
    post_id: int,
    limit: int | None = None,
    sort_by: str = "date",
    client: ServiceClient | None = None,
) -> list[dict]:
    """
    Top-level comments of a post.  ``sort_by="likes"`` orders by like count
    (ties newest first); anything else orders newest first.
    """
    result = await db.execute(
        select(Comment)
        .where(Comment.post_id == post_id, Comment.parent_id.is_(None))
        .order_by(Comment.created_at.desc(), Comment.id.desc())
    )
    comments = result.scalars().all()
    counts = await _likes_counts(db, [c.id for c in comments])
    items = [_comment_to_dict(c, counts.get(c.id, 0)) for c in comments]
    if sort_by == "likes":
        # Stable sort keeps the newest-first order among equal counts.
        items.sort(key=lambda c: c["likes_count"], reverse=True)
    if limit:
        items = items[:limit]
    return await _attach_user_details(items, client)


async def get_replies(db: AsyncSession, comment_id: int, client: ServiceClient | None = None) -> list[dict]:
    result = await db.execute(
        select(Comment)
        .where(Comment.parent_id == comment_id)
        .order_by(Comment.created_at.asc(), Comment.id.asc())
    )
    replies = result.scalars().all()
    counts = await _likes_counts(db, [c.id for c in replies])
    return await _attach_user_details([_comment_to_dict(c, counts.get(c.id, 0)) for c in replies], client)


async def like_comment(db: AsyncSession, comment_id: int, user_id: int) -> tuple[dict, int] | None:
    """Return ``(comment, likes_count)``; None when the comment does not exist."""
    comment = await db.get(Comment, comment_id)
    if comment is None:
        return None
    existing = await db.execute(
        select(CommentLike).where(CommentLike.comment_id == comment_id, CommentLike.user_id == user_id)
    )
    if existing.scalar_one_or_none() is not None:
        raise InvalidRequest("You already liked this comment", code="ALREADY_LIKED")
    db.add(CommentLike(comment_id=comment_id, user_id=user_id))
    await db.flush()
    count = (await _likes_counts(db, [comment_id])).get(comment_id, 0)
    return _comment_to_dict(comment, count), count


async def unlike_comment(db: AsyncSession, comment_id: int, user_id: int) -> int | None:
    """Return the remaining like count; None when the comment does not exist."""
    comment = await db.get(Comment, comment_id)
    if comment is None:
        return None
    result = await db.execute(
        delete(CommentLike).where(CommentLike.comment_id == comment_id, CommentLike.user_id == user_id)
    )
    if not result.rowcount:
        raise InvalidRequest("You haven't liked this comment", code="NOT_LIKED")
    return (await _likes_counts(db, [comment_id])).get(comment_id, 0)


# ---------------------------------------------------------------------------
# Shares
# ---------------------------------------------------------------------------

async def share_post(db: AsyncSession, user_id: int, post_id: int, message: str | None) -> dict:
    share = Share(user_id=user_id, post_id=post_id, message=message or "")
    db.add(share)
    await db.flush()
    return _share_to_dict(share)


async def get_shares(db: AsyncSession, post_id: int) -> list[dict]:
    result = await db.execute(
        select(Share).where(Share.post_id == post_id).order_by(Share.created_at.desc(), Share.id.desc())
    )
    return [_share_to_dict(s) for s in result.scalars().all()]


# ---------------------------------------------------------------------------
# Account removal
# ---------------------------------------------------------------------------

async def delete_user_engagement(db: AsyncSession, user_id: int) -> dict:
    likes = await db.execute(delete(Like).where(Like.user_id == user_id))
    comment_likes = await db.execute(delete(CommentLike).where(CommentLike.user_id == user_id))
    own = await db.execute(select(Comment.id).where(Comment.user_id == user_id))
    comments = await _delete_comments(db, list(own.scalars().all()))
    shares = await db.execute(delete(Share).where(Share.user_id == user_id))
    return {
        "likes": likes.rowcount or 0,
        "comment_likes": comment_likes.rowcount or 0,
        "comments": comments,
        "shares": shares.rowcount or 0,
    }


# ---------------------------------------------------------------------------
# Owner notifications (run as background tasks)
# ---------------------------------------------------------------------------

_POST_VERBS = {
    "LIKE": "liked your post",
    "COMMENT": "commented on your post",
    "SHARE": "shared your post",
}


async def notify_post_owner(
    client: ServiceClient,
    *,
    type: str,
    actor_id: int,
    post_id: int,
    owner_id: int | None = None,
) -> bool:
    """
    Tell the post's author that *actor_id* liked, commented on or shared it.

    The author is read from the feed service.  *owner_id* is a hint from
    the client, used only when the post cannot be fetched.  Self-actions
    are skipped.
    """
    post = await client.get_post(post_id)
    if post and post.get("author_id") is not None:
        owner_id = post["author_id"]
    if owner_id is None:
        logger.debug("No owner known for post %s; %s notification skipped", post_id, type)
        return False

    snippet = truncate(post.get("content") if post else "", POST_SNIPPET_LENGTH)
    content = f"{{actor}} {_POST_VERBS[type]}"
    if snippet:
        content += f': "{snippet}"'
    return await client.notify(
        user_id=owner_id, type=type, content=content, actor_id=actor_id, related_id=post_id,
    )


async def notify_comment_owner(
    client: ServiceClient,
    *,
    actor_id: int,
    comment_owner_id: int,
    comment_id: int,
    comment_content: str,
    post_id: int,
) -> bool:
    if comment_owner_id == actor_id:
        return False
    post = await client.get_post(post_id)
    post_snippet = truncate(post.get("content") if post else "", COMMENT_SNIPPET_LENGTH)
    comment_snippet = truncate(comment_content, COMMENT_SNIPPET_LENGTH)
    if post_snippet:
        content = f'{{actor}} liked your comment "{comment_snippet}" on post: "{post_snippet}"'
    else:
        content = f'{{actor}} liked your comment: "{comment_snippet}"'
    return await client.notify(
        user_id=comment_owner_id, type="LIKE", content=content, actor_id=actor_id, related_id=comment_id,
    )
