"""Notifications triggered by new chat messages."""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from portal.config import PortalConfig, get_config
from portal.db.models import Conversation, ConversationParticipant, Message, Profile
from portal.notifications import inbox, queue
from portal.notifications.messages import format_mentions, truncate_body
from portal.notifications.preferences import channel_enabled, is_enabled

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE_TYPE = "system_notification"


def _preview(message: Message) -> str:
    if message.content:
        return truncate_body(format_mentions(message.content))
    if message.attachment_name:
        return f"📎 {message.attachment_name}"
    return ""


async def notify_chat_message(
    session: AsyncSession,
    message: Message,
    config: Optional[PortalConfig] = None,
) -> int:
    """Fan a new message out to the other participants. Returns recipients notified."""
    if message.message_type == SYSTEM_MESSAGE_TYPE:
        return 0
    config = config or get_config()

    conversation = await session.scalar(
        select(Conversation)
        .where(Conversation.id == message.conversation_id)
        .options(
            selectinload(Conversation.participants).selectinload(ConversationParticipant.user)
        )
    )
    if conversation is None:
        return 0

    sender = await session.get(Profile, message.sender_id)
    sender_name = sender.full_name if sender else "Someone"
    if conversation.is_group:
        title = f"New message in {conversation.group_name or 'group chat'}"
    else:
        title = f"New message from {sender_name}"

    recipients = [
        p.user for p in conversation.participants
        if p.user_id != message.sender_id and p.user is not None
        and is_enabled(p.user.notification_preferences, "comment")
    ]
    if not recipients:
        return 0

    preview = _preview(message)
    await inbox.create_notification(
        session,
        type="new_chat_message",
        title=title,
        body=preview,
        recipients=[r.id for r in recipients],
        actor_id=message.sender_id,
        resource_type="conversation",
        resource_id=conversation.id,
        data={"link": "/chat", "conversation_id": conversation.id, "message_id": message.id},
    )

    delay = timedelta(minutes=config.notification.preferences.chat_bundle_minutes)
    context = {
        "sender_name": sender_name,
        "group_name": conversation.group_name if conversation.is_group else None,
        "preview": preview,
        "conversation_id": conversation.id,
    }
    for recipient in recipients:
        prefs = recipient.notification_preferences
        if not any(channel_enabled(prefs, "comment", ch) for ch in ("whatsapp", "email")):
            continue
        await queue.enqueue_chat_bundle(
            session,
            recipient_id=recipient.id,
            conversation_id=conversation.id,
            context=context,
            delay=delay,
        )

    logger.debug(f"Chat message {message.id} notified {len(recipients)} participant(s)")
    return len(recipients)
