from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.database import get_db
from campusnet.dependencies import CurrentUser, get_current_user, require_internal, user_from_token
from campusnet.exceptions import CampusNetError
from campusnet.realtime import notification_hub
from campusnet.schemas import NotificationCreate, NotificationList
from campusnet.services import notification_service

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=NotificationList)
async def list_notifications(
    limit: int = Query(50, ge=1, le=100),
    skip: int = Query(0, ge=0),
    unread_only: bool = Query(False),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await notification_service.list_notifications(db, user.id, limit, skip, unread_only)


@router.get("/unread-count")
async def unread_count(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return {"count": await notification_service.unread_count(db, user.id)}


@router.put("/read-all")
async def mark_all_read(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    updated = await notification_service.mark_all_read(db, user.id)
    await db.commit()
    await notification_hub.send_to_user(user.id, "notifications_updated", {"unread_count": 0})
    return {"message": "All notifications marked as read", "updated": updated}


@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await notification_service.mark_read(db, notification_id, user.id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    await notification_hub.send_to_user(user.id, "notification_read", {"id": notification_id})
    return notification


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    deleted = await notification_service.delete_notification(db, notification_id, user.id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "Notification deleted"}


@router.post("", status_code=201, dependencies=[Depends(require_internal)])
async def create_notification(data: NotificationCreate, db: AsyncSession = Depends(get_db)):
    notification = await notification_service.create_notification(db, data)
    unread = await notification_service.unread_count(db, data.user_id)
    await db.commit()
    await notification_hub.send_to_user(data.user_id, "new_notification", notification)
    await notification_hub.send_to_user(data.user_id, "notifications_updated", {"unread_count": unread})
    return notification


@router.delete("/user/{user_id}", dependencies=[Depends(require_internal)])
async def delete_user_notifications(user_id: int, db: AsyncSession = Depends(get_db)):
    count = await notification_service.delete_user_notifications(db, user_id)
    return {"message": f"Deleted {count} notification(s) for user {user_id}", "deleted": count}


@router.websocket("/ws")
async def notifications_socket(websocket: WebSocket, token: str | None = Query(None)):
    """Push-only channel; anything the client sends is ignored."""
    try:
        user = user_from_token(token or "")
    except CampusNetError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await notification_hub.connect(user.id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        notification_hub.disconnect(user.id, websocket)
