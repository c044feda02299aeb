"""
Message service: one-to-one conversations.

Design notes
------------
- A conversation is keyed by its participant pair stored sorted
  (``user_low_id < user_high_id``), so lookup does not depend on who
  wrote first.
- Each conversation caches its last message and one unread counter per
  participant; every write path here keeps those in step with the
  ``messages`` rows.
- The same functions back both the REST endpoints and the websocket
  handler, which opens its own short sessions.
"""
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.exceptions import InvalidRequest, PermissionDenied
from campusnet.models import Conversation, Message
from campusnet.timeutils import isoformat, utcnow


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _pair(a: int, b: int) -> tuple[int, int]:
    return (a, b) if a < b else (b, a)


def _unread_attr(conversation: Conversation, user_id: int) -> str:
    return "unread_low" if user_id == conversation.user_low_id else "unread_high"


def _message_to_dict(message: Message) -> dict:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "recipient_id": message.recipient_id,
        "content": message.content,
        "is_read": message.is_read,
        "read_at": isoformat(message.read_at),
        "created_at": isoformat(message.created_at),
    }


def _conversation_to_dict(conversation: Conversation, user_id: int) -> dict:
    other = conversation.user_high_id if user_id == conversation.user_low_id else conversation.user_low_id
    return {
        "id": conversation.id,
        "other_user_id": other,
        "last_message": {
            "content": conversation.last_message,
            "sender_id": conversation.last_message_sender_id,
            "created_at": isoformat(conversation.last_message_at),
        } if conversation.last_message is not None else None,
        "last_message_at": isoformat(conversation.last_message_at or conversation.created_at),
        "unread_count": getattr(conversation, _unread_attr(conversation, user_id)),
    }


async def find_conversation(db: AsyncSession, a: int, b: int) -> Conversation | None:
    low, high = _pair(a, b)
    result = await db.execute(
        select(Conversation).where(Conversation.user_low_id == low, Conversation.user_high_id == high)
    )
    return result.scalar_one_or_none()


async def _refresh_summary(db: AsyncSession, conversation: Conversation) -> None:
    """Recompute the cached last message and both unread counters from the rows."""
    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation.id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    conversation.last_message = last.content if last else None
    conversation.last_message_sender_id = last.sender_id if last else None
    conversation.last_message_at = last.created_at if last else None

    for user_id in (conversation.user_low_id, conversation.user_high_id):
        unread = (await db.execute(
            select(func.count()).select_from(Message).where(
                Message.conversation_id == conversation.id,
                Message.recipient_id == user_id,
                Message.is_read.is_(False),
            )
        )).scalar_one()
        setattr(conversation, _unread_attr(conversation, user_id), unread)


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def send_message(db: AsyncSession, sender_id: int, recipient_id: int, content: str) -> dict:
    """Store a message, creating the conversation on first contact."""
    content = (content or "").strip()
    if not content:
        raise InvalidRequest("Recipient and message text are required", code="EMPTY_MESSAGE")
    if sender_id == recipient_id:
        raise InvalidRequest("Cannot send a message to yourself", code="SELF_MESSAGE")

    conversation = await find_conversation(db, sender_id, recipient_id)
    if conversation is None:
        low, high = _pair(sender_id, recipient_id)
        conversation = Conversation(user_low_id=low, user_high_id=high)
        db.add(conversation)
        await db.flush()

    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        recipient_id=recipient_id,
        content=content,
        created_at=utcnow(),
    )
    db.add(message)

    conversation.last_message = content
    conversation.last_message_sender_id = sender_id
    conversation.last_message_at = message.created_at
    attr = _unread_attr(conversation, recipient_id)
    setattr(conversation, attr, getattr(conversation, attr) + 1)
    await db.flush()
    return {"message": _message_to_dict(message), "conversation_id": conversation.id}


async def list_conversations(db: AsyncSession, user_id: int) -> list[dict]:
    """Conversations of *user_id*, most recent activity first."""
    activity = func.coalesce(Conversation.last_message_at, Conversation.created_at)
    result = await db.execute(
        select(Conversation)
        .where(or_(Conversation.user_low_id == user_id, Conversation.user_high_id == user_id))
        .order_by(activity.desc(), Conversation.id.desc())
    )
    return [_conversation_to_dict(c, user_id) for c in result.scalars().all()]


async def get_conversation(db: AsyncSession, user_id: int, other_id: int) -> dict:
    conversation = await find_conversation(db, user_id, other_id)
    if conversation is None:
        return {"conversation_id": None, "messages": []}
    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation.id)
        .order_by(Message.created_at.asc(), Message.id.asc())
    )
    return {
        "conversation_id": conversation.id,
        "messages": [_message_to_dict(m) for m in result.scalars().all()],
    }


async def mark_read(db: AsyncSession, user_id: int, other_id: int) -> int | None:
    """
    Mark every message *other_id* sent to *user_id* as read.  Returns the
    number of messages updated, or None when there is no conversation.
    """
    conversation = await find_conversation(db, user_id, other_id)
    if conversation is None:
        return None
    result = await db.execute(
        update(Message)
        .where(
            Message.conversation_id == conversation.id,
            Message.recipient_id == user_id,
            Message.is_read.is_(False),
        )
        .values(is_read=True, read_at=utcnow())
    )
    setattr(conversation, _unread_attr(conversation, user_id), 0)
    await db.flush()
    return result.rowcount or 0


async def delete_message(db: AsyncSession, message_id: int, user_id: int) -> bool:
    message = await db.get(Message, message_id)
    if message is None:
        return False
    if message.sender_id != user_id:
        raise PermissionDenied("Not authorized to delete this message")
    conversation = await db.get(Conversation, message.conversation_id)
    await db.delete(message)
    await db.flush()
    if conversation is not None:
        await _refresh_summary(db, conversation)
        await db.flush()
    return True


async def delete_conversation(db: AsyncSession, user_id: int, other_id: int) -> bool:
    conversation = await find_conversation(db, user_id, other_id)
    if conversation is None:
        return False
    await db.execute(delete(Message).where(Message.conversation_id == conversation.id))
    await db.delete(conversation)
    await db.flush()
    return True


async def delete_user_messages(db: AsyncSession, user_id: int) -> dict:
    """Remove every conversation the user took part in, with all its messages."""
    result = await db.execute(
        select(Conversation.id).where(
            or_(Conversation.user_low_id == user_id, Conversation.user_high_id == user_id)
        )
    )
    conversation_ids = list(result.scalars().all())
    messages = 0
    if conversation_ids:
        removed = await db.execute(delete(Message).where(Message.conversation_id.in_(conversation_ids)))
        messages = removed.rowcount or 0
        await db.execute(delete(Conversation).where(Conversation.id.in_(conversation_ids)))
    return {"conversations": len(conversation_ids), "messages": messages}
