import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campusnet.database import get_db, get_sessionmaker
from campusnet.dependencies import CurrentUser, get_current_user, require_internal, user_from_token
from campusnet.exceptions import CampusNetError
from campusnet.realtime import message_hub
from campusnet.schemas import SendMessageRequest
from campusnet.services import message_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.post("/send", status_code=201)
async def send_message(
    data: SendMessageRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await message_service.send_message(db, user.id, data.recipient_id, data.content)
    await db.commit()
    await message_hub.send_to_user(data.recipient_id, "receive_message", result)
    return result


@router.get("/conversations")
async def list_conversations(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await message_service.list_conversations(db, user.id)


@router.get("/conversation/{user_id}")
async def get_conversation(
    user_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await message_service.get_conversation(db, user.id, user_id)


@router.put("/conversation/{user_id}/read")
async def mark_read(
    user_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    updated = await message_service.mark_read(db, user.id, user_id)
    if updated is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    await db.commit()
    await message_hub.send_to_user(user_id, "messages_read", {"user_id": user.id})
    return {"message": "Messages marked as read", "updated": updated}


@router.delete("/conversation/{user_id}")
async def delete_conversation(
    user_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    deleted = await message_service.delete_conversation(db, user.id, user_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"message": "Conversation deleted"}


@router.delete("/user/{user_id}", dependencies=[Depends(require_internal)])
async def delete_user_messages(user_id: int, db: AsyncSession = Depends(get_db)):
    deleted = await message_service.delete_user_messages(db, user_id)
    return {"message": f"Deleted messages for user {user_id}", "deleted": deleted}


@router.delete("/{message_id}")
async def delete_message(
    message_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    deleted = await message_service.delete_message(db, message_id, user.id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Message not found")
    return {"message": "Message deleted"}


# ---------------------------------------------------------------------------
# Websocket
# ---------------------------------------------------------------------------

async def _handle_event(
    websocket: WebSocket,
    user_id: int,
    event: str,
    data: dict,
    session_factory: async_sessionmaker,
) -> None:
    if event == "send_message":
        recipient_id = int(data["recipient_id"])
        async with session_factory() as db:
            result = await message_service.send_message(db, user_id, recipient_id, data.get("content", ""))
            await db.commit()
        await websocket.send_json({"event": "message_sent", "data": result})
        await message_hub.send_to_user(recipient_id, "receive_message", result)
    elif event in ("typing", "stop_typing"):
        outgoing = "user_typing" if event == "typing" else "user_stop_typing"
        await message_hub.send_to_user(int(data["recipient_id"]), outgoing, {"user_id": user_id})
    elif event == "mark_read":
        other_id = int(data["user_id"])
        async with session_factory() as db:
            updated = await message_service.mark_read(db, user_id, other_id)
            await db.commit()
        if updated is not None:
            await message_hub.send_to_user(other_id, "messages_read", {"user_id": user_id})
    else:
        await websocket.send_json({"event": "message_error", "data": {"message": f"Unknown event: {event}"}})


@router.websocket("/ws")
async def messages_socket(
    websocket: WebSocket,
    token: str | None = Query(None),
    session_factory: async_sessionmaker = Depends(get_sessionmaker),
):
    """
    Realtime channel.  Frames are ``{"event": ..., "data": {...}}``; see
    ``_handle_event`` for the client events understood here.
    """
    try:
        user = user_from_token(token or "")
    except CampusNetError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    if await message_hub.connect(user.id, websocket):
        await message_hub.broadcast("user_status", {"user_id": user.id, "online": True}, exclude=user.id)
    try:
        while True:
            raw = await websocket.receive_text()
            event = None
            try:
                frame = json.loads(raw)
                event = frame["event"]
                await _handle_event(websocket, user.id, event, frame.get("data") or {}, session_factory)
            except CampusNetError as e:
                await websocket.send_json({"event": "message_error", "data": {"message": e.message}})
            except (KeyError, TypeError, ValueError, AttributeError):
                await websocket.send_json({"event": "message_error", "data": {"message": "Malformed event"}})
            except SQLAlchemyError:
                logger.exception("Websocket %s event failed for user %s", event, user.id)
                await websocket.send_json({"event": "message_error", "data": {"message": "Failed to send message"}})
    except WebSocketDisconnect:
        pass
    finally:
        if message_hub.disconnect(user.id, websocket):
            await message_hub.broadcast("user_status", {"user_id": user.id, "online": False})
