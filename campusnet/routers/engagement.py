from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.clients import ServiceClient, get_service_client
from campusnet.database import get_db
from campusnet.dependencies import CurrentUser, get_current_user, require_internal
from campusnet.schemas import CommentCreate, CommentUpdate, LikeRequest, ShareRequest
from campusnet.services import engagement_service

router = APIRouter(prefix="/api/engagement", tags=["engagement"])


# --- Likes ---

@router.post("/like/{post_id}")
async def like_post(
    post_id: int,
    background_tasks: BackgroundTasks,
    data: LikeRequest = LikeRequest(),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    like, created = await engagement_service.like_post(db, user.id, post_id, data.reaction_type)
    if not created:
        return {"message": "Reaction updated", "like": like}
    background_tasks.add_task(
        engagement_service.notify_post_owner,
        client, type="LIKE", actor_id=user.id, post_id=post_id, owner_id=data.post_owner_id,
    )
    return JSONResponse(status_code=201, content={"message": "Post liked", "like": like})


@router.delete("/unlike/{post_id}")
async def unlike_post(
    post_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    removed = await engagement_service.unlike_post(db, user.id, post_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Like not found")
    return {"message": "Post unliked"}


@router.get("/likes/{post_id}")
async def get_likes(post_id: int, db: AsyncSession = Depends(get_db)):
    return await engagement_service.get_likes(db, post_id)


# --- Comments ---

@router.post("/comment/{post_id}", status_code=201)
async def create_comment(
    post_id: int,
    data: CommentCreate,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    comment = await engagement_service.create_comment(db, user.id, post_id, data, client)
    background_tasks.add_task(
        engagement_service.notify_post_owner,
        client, type="COMMENT", actor_id=user.id, post_id=post_id, owner_id=data.post_owner_id,
    )
    return comment


@router.put("/comment/{comment_id}")
async def update_comment(
    comment_id: int,
    data: CommentUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    comment = await engagement_service.update_comment(db, comment_id, user.id, data.content)
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    return comment


@router.delete("/comment/{comment_id}")
async def delete_comment(
    comment_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    deleted = await engagement_service.delete_comment(db, comment_id, user.id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Comment not found")
    return {"message": "Comment deleted successfully"}


@router.get("/comments/{post_id}")
async def get_comments(
    post_id: int,
    limit: int | None = Query(None, ge=1, le=200),
    sort_by: str = Query("date", pattern="^(date|likes)$"),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    return await engagement_service.get_comments(db, post_id, limit, sort_by, client)


@router.get("/replies/{comment_id}")
async def get_replies(
    comment_id: int,
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    return await engagement_service.get_replies(db, comment_id, client)


@router.post("/comment/{comment_id}/like")
async def like_comment(
    comment_id: int,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    result = await engagement_service.like_comment(db, comment_id, user.id)
    if result is None:
        raise HTTPException(status_code=404, detail="Comment not found")
    comment, likes_count = result
    background_tasks.add_task(
        engagement_service.notify_comment_owner,
        client,
        actor_id=user.id,
        comment_owner_id=comment["user_id"],
        comment_id=comment_id,
        comment_content=comment["content"],
        post_id=comment["post_id"],
    )
    return {"message": "Comment liked successfully", "comment_id": comment_id, "likes_count": likes_count}


@router.delete("/comment/{comment_id}/unlike")
async def unlike_comment(
    comment_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    likes_count = await engagement_service.unlike_comment(db, comment_id, user.id)
    if likes_count is None:
        raise HTTPException(status_code=404, detail="Comment not found")
    return {"message": "Comment unliked successfully", "comment_id": comment_id, "likes_count": likes_count}


# --- Shares ---

@router.post("/share/{post_id}", status_code=201)
async def share_post(
    post_id: int,
    background_tasks: BackgroundTasks,
    data: ShareRequest = ShareRequest(),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    share = await engagement_service.share_post(db, user.id, post_id, data.message)
    background_tasks.add_task(
        engagement_service.notify_post_owner,
        client, type="SHARE", actor_id=user.id, post_id=post_id, owner_id=data.post_owner_id,
    )
    return share


@router.get("/shares/{post_id}")
async def get_shares(post_id: int, db: AsyncSession = Depends(get_db)):
    return await engagement_service.get_shares(db, post_id)


@router.delete("/user/{user_id}", dependencies=[Depends(require_internal)])
async def delete_user_engagement(user_id: int, db: AsyncSession = Depends(get_db)):
    deleted = await engagement_service.delete_user_engagement(db, user_id)
    return {"message": "All user engagement data deleted successfully", "deleted": deleted}
