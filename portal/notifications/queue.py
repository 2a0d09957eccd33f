"""Queue of external notifications waiting to be delivered.

Rows are written by the application (task assignment, chat messages,
reminder jobs) and drained by ``NotificationProcessor``.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db.models import DeliveryStatus, PendingNotification, utcnow

logger = logging.getLogger(__name__)

CHAT_NOTIFICATION_TYPE = "new_chat_message"


async def enqueue(
    session: AsyncSession,
    *,
    recipient_id: str,
    notification_type: str,
    context: Optional[dict] = None,
    debounce_key: Optional[str] = None,
    send_at: Optional[datetime] = None,
    conversation_id: Optional[str] = None,
) -> Optional[PendingNotification]:
    """Queue a notification. Returns None if the debounce key was already used."""
    if debounce_key is not None:
        existing = await session.scalar(
            select(PendingNotification.id).where(
                PendingNotification.recipient_id == recipient_id,
                PendingNotification.notification_type == notification_type,
                PendingNotification.debounce_key == debounce_key,
            )
        )
        if existing is not None:
            logger.debug(
                f"Skipping duplicate {notification_type} for {recipient_id} ({debounce_key})"
            )
            return None

    row = PendingNotification(
        recipient_id=recipient_id,
        notification_type=notification_type,
        context_data=context or {},
        debounce_key=debounce_key,
        send_at=send_at or utcnow(),
        conversation_id=conversation_id,
    )
    session.add(row)
    await session.flush()
    return row


async def enqueue_chat_bundle(
    session: AsyncSession,
    *,
    recipient_id: str,
    conversation_id: str,
    context: dict,
    delay: timedelta,
) -> Optional[PendingNotification]:
    """One pending chat notification per (conversation, recipient).

    Messages arriving while a notification is still pending are folded into it.
    """
    existing = await session.scalar(
        select(PendingNotification.id).where(
            PendingNotification.conversation_id == conversation_id,
            PendingNotification.recipient_id == recipient_id,
            PendingNotification.notification_type == CHAT_NOTIFICATION_TYPE,
            PendingNotification.status == DeliveryStatus.PENDING.value,
        )
    )
    if existing is not None:
        return None
    return await enqueue(
        session,
        recipient_id=recipient_id,
        notification_type=CHAT_NOTIFICATION_TYPE,
        context=context,
        send_at=utcnow() + delay,
        conversation_id=conversation_id,
    )


async def pop_pending(
    session: AsyncSession, limit: int = 10, now: Optional[datetime] = None
) -> list[PendingNotification]:
    """Claim up to ``limit`` due notifications (status -> processing)."""
    now = now or utcnow()
    stmt = (
        select(PendingNotification)
        .where(
            PendingNotification.status == DeliveryStatus.PENDING.value,
            PendingNotification.send_at <= now,
        )
        .order_by(PendingNotification.send_at, PendingNotification.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    rows = list((await session.execute(stmt)).scalars().all())
    for row in rows:
        row.status = DeliveryStatus.PROCESSING.value
    await session.flush()
    return rows


def mark_completed(row: PendingNotification) -> None:
    row.status = DeliveryStatus.COMPLETED.value
    row.processed_at = utcnow()
    row.error_message = None


def mark_failed(row: PendingNotification, error: str, count_retry: bool = True) -> None:
    row.status = DeliveryStatus.FAILED.value
    row.processed_at = utcnow()
    row.error_message = error
    if count_retry:
        row.retry_count = (row.retry_count or 0) + 1
