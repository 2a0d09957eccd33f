"""In-app notifications (the bell menu).

One ``Notification`` row per event, fanned out to users through
``NotificationRecipient`` which also tracks read state.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from portal.db.models import Notification, NotificationRecipient, utcnow
from portal.models import NotificationOut, UserRef

logger = logging.getLogger(__name__)


async def create_notification(
    session: AsyncSession,
    *,
    type: str,
    title: str,
    recipients: Iterable[str],
    body: Optional[str] = None,
    actor_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    data: Optional[dict] = None,
) -> Optional[Notification]:
    """Create a notification for every recipient except the actor."""
    user_ids = sorted({uid for uid in recipients if uid and uid != actor_id})
    if not user_ids:
        return None

    notification = Notification(
        type=type,
        title=title,
        body=body,
        actor_id=actor_id,
        resource_type=resource_type,
        resource_id=resource_id,
        data=data or {},
    )
    session.add(notification)
    await session.flush()
    for user_id in user_ids:
        session.add(NotificationRecipient(notification_id=notification.id, user_id=user_id))
    await session.flush()
    logger.debug(f"Notification {type} created for {len(user_ids)} recipient(s)")
    return notification


async def list_notifications(
    session: AsyncSession, user_id: str, unread_only: bool = False, limit: int = 50
) -> list[NotificationOut]:
    stmt = (
        select(NotificationRecipient)
        .where(NotificationRecipient.user_id == user_id)
        .join(NotificationRecipient.notification)
        .options(
            selectinload(NotificationRecipient.notification).selectinload(Notification.actor)
        )
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )
    if unread_only:
        stmt = stmt.where(NotificationRecipient.read_at.is_(None))

    rows = (await session.execute(stmt)).scalars().all()
    result = []
    for row in rows:
        n = row.notification
        result.append(
            NotificationOut(
                id=n.id,
                type=n.type,
                title=n.title,
                body=n.body,
                link=(n.data or {}).get("link"),
                resource_type=n.resource_type,
                resource_id=n.resource_id,
                actor=UserRef.from_profile(n.actor) if n.actor else None,
                created_at=n.created_at,
                read=row.read_at is not None,
            )
        )
    return result


async def mark_read(session: AsyncSession, user_id: str, notification_id: str) -> bool:
    result = await session.execute(
        update(NotificationRecipient)
        .where(
            NotificationRecipient.user_id == user_id,
            NotificationRecipient.notification_id == notification_id,
            NotificationRecipient.read_at.is_(None),
        )
        .values(read_at=utcnow())
    )
    return result.rowcount > 0


async def mark_all_read(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        update(NotificationRecipient)
        .where(
            NotificationRecipient.user_id == user_id,
            NotificationRecipient.read_at.is_(None),
        )
        .values(read_at=utcnow())
    )
    return result.rowcount


async def unread_count(session: AsyncSession, user_id: str) -> int:
    return await session.scalar(
        select(func.count())
        .select_from(NotificationRecipient)
        .where(
            NotificationRecipient.user_id == user_id,
            NotificationRecipient.read_at.is_(None),
        )
    )
