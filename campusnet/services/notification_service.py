from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.models import Notification
from campusnet.schemas import NotificationCreate, NotificationResponse


def _to_dict(notification: Notification) -> dict:
    return NotificationResponse.model_validate(notification).model_dump(mode="json")


async def create_notification(db: AsyncSession, data: NotificationCreate) -> dict:
    notification = Notification(**data.model_dump())
    db.add(notification)
    await db.flush()
    await db.refresh(notification)
    return _to_dict(notification)


async def list_notifications(
    db: AsyncSession,
    user_id: int,
    limit: int = 50,
    skip: int = 0,
    unread_only: bool = False,
) -> dict:
    """Newest first.  ``total`` counts the filtered set, not just this page."""
    filters = [Notification.user_id == user_id]
    if unread_only:
        filters.append(Notification.is_read.is_(False))

    total = (await db.execute(select(func.count()).select_from(Notification).where(*filters))).scalar_one()
    result = await db.execute(
        select(Notification)
        .where(*filters)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(skip)
        .limit(limit)
    )
    notifications = [_to_dict(n) for n in result.scalars().all()]
    return {
        "notifications": notifications,
        "total": total,
        "has_more": skip + len(notifications) < total,
    }


async def unread_count(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        select(func.count()).select_from(Notification).where(
            Notification.user_id == user_id, Notification.is_read.is_(False)
        )
    )
    return result.scalar_one()


async def _owned(db: AsyncSession, notification_id: int, user_id: int) -> Notification | None:
    """Another user's notification is reported as missing."""
    notification = await db.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        return None
    return notification


async def mark_read(db: AsyncSession, notification_id: int, user_id: int) -> dict | None:
    notification = await _owned(db, notification_id, user_id)
    if notification is None:
        return None
    notification.is_read = True
    await db.flush()
    return _to_dict(notification)


async def mark_all_read(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    return result.rowcount or 0


async def delete_notification(db: AsyncSession, notification_id: int, user_id: int) -> bool:
    notification = await _owned(db, notification_id, user_id)
    if notification is None:
        return False
    await db.delete(notification)
    await db.flush()
    return True


async def delete_user_notifications(db: AsyncSession, user_id: int) -> int:
    """Remove notifications addressed to the user and those the user triggered."""
    result = await db.execute(
        delete(Notification).where(
            or_(Notification.user_id == user_id, Notification.related_user_id == user_id)
        )
    )
    return result.rowcount or 0
