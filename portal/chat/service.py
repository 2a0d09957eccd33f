"""Chat data access: conversations, messages, reactions and search.

Server-side equivalents of the chat RPCs. Functions take an open
``AsyncSession``; ``send_message`` additionally publishes the new row to the
realtime hub.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from portal.chat.realtime import RealtimeHub, get_hub
from portal.config import PortalConfig
from portal.db.models import (
    Conversation,
    ConversationParticipant,
    Message,
    MessageReaction,
    Profile,
)
from portal.errors import NotFoundError, PermissionDeniedError, ValidationError
from portal.models import (
    Attachment,
    ConversationOut,
    MessageOut,
    MessageSearchHit,
    ReactionOut,
    RepliedMessage,
    SendMessageRequest,
    UserRef,
)
from portal.notifications.chat import notify_chat_message

logger = logging.getLogger(__name__)

DELETED_TEXT = "This message was deleted"


def _attachment(message: Message) -> Optional[Attachment]:
    if not message.attachment_url:
        return None
    return Attachment(
        name=message.attachment_name or "attachment",
        url=message.attachment_url,
        type=message.attachment_type or "application/octet-stream",
    )


def _last_message_text(message: Optional[Message]) -> str:
    if message is None:
        return "No messages yet."
    if message.is_deleted:
        return DELETED_TEXT
    if message.content:
        return message.content
    if message.attachment_name:
        return f"📎 {message.attachment_name}"
    return "No messages yet."


def message_record(message: Message) -> dict:
    """Row as published on the realtime hub."""
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "content": message.content,
        "message_type": message.message_type,
        "reply_to_message_id": message.reply_to_message_id,
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }


def conversation_record(conversation: Conversation) -> dict:
    return {
        "id": conversation.id,
        "is_group": conversation.is_group,
        "group_name": conversation.group_name,
        "last_message_at": (
            conversation.last_message_at.isoformat() if conversation.last_message_at else None
        ),
    }


async def _participant(
    session: AsyncSession, conversation_id: str, user_id: str
) -> ConversationParticipant:
    participant = await session.scalar(
        select(ConversationParticipant).where(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        )
    )
    if participant is None:
        exists = await session.get(Conversation, conversation_id)
        if exists is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        raise PermissionDeniedError("Not a participant of this conversation")
    return participant


# --- Conversations ---


async def get_user_conversations(session: AsyncSession, user_id: str) -> list[ConversationOut]:
    visible = select(ConversationParticipant.conversation_id).where(
        ConversationParticipant.user_id == user_id,
        ConversationParticipant.is_hidden.is_(False),
    )
    result = await session.execute(
        select(Conversation)
        .where(Conversation.id.in_(visible))
        .options(
            selectinload(Conversation.participants).selectinload(ConversationParticipant.user)
        )
    )
    conversations = []
    for conv in result.scalars().all():
        last = await session.scalar(
            select(Message)
            .where(Message.conversation_id == conv.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
        )
        members = [p.user for p in conv.participants if p.user is not None]
        others = [m for m in members if m.id != user_id]
        if conv.is_group:
            name, avatar = conv.group_name or "Group", None
        elif others:
            name, avatar = others[0].full_name, others[0].avatar_url
        else:
            name, avatar = "Chat", None

        conversations.append(
            ConversationOut(
                id=conv.id,
                name=name,
                avatar_url=avatar,
                last_message=_last_message_text(last),
                last_message_at=conv.last_message_at or conv.created_at,
                is_group=conv.is_group,
                members=[UserRef.from_profile(m) for m in members],
                created_by=conv.created_by,
            )
        )
    conversations.sort(key=lambda c: c.last_message_at, reverse=True)
    return conversations


async def create_or_get_conversation(
    session: AsyncSession, user_id: str, other_user_id: str
) -> str:
    """Return the 1:1 conversation between two users, creating it if needed."""
    if user_id == other_user_id:
        raise ValidationError("Cannot start a conversation with yourself")
    if await session.get(Profile, other_user_id) is None:
        raise NotFoundError(f"User {other_user_id} not found")

    mine = select(ConversationParticipant.conversation_id).where(
        ConversationParticipant.user_id == user_id
    )
    theirs = select(ConversationParticipant.conversation_id).where(
        ConversationParticipant.user_id == other_user_id
    )
    existing = await session.scalar(
        select(Conversation).where(
            Conversation.is_group.is_(False),
            Conversation.id.in_(mine),
            Conversation.id.in_(theirs),
        )
    )
    if existing is not None:
        participant = await _participant(session, existing.id, user_id)
        participant.is_hidden = False
        return existing.id

    conversation = Conversation(is_group=False, created_by=user_id)
    session.add(conversation)
    await session.flush()
    for uid in (user_id, other_user_id):
        session.add(ConversationParticipant(conversation_id=conversation.id, user_id=uid))
    await session.flush()
    logger.info(f"Direct conversation {conversation.id} created")
    return conversation.id


async def create_group_conversation(
    session: AsyncSession, user_id: str, name: str, participant_ids: Iterable[str]
) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Group name is required")
    members = list(dict.fromkeys([user_id, *participant_ids]))
    if len(members) < 2:
        raise ValidationError("A group needs at least one other participant")

    conversation = Conversation(is_group=True, group_name=name, created_by=user_id)
    session.add(conversation)
    await session.flush()
    for uid in members:
        session.add(ConversationParticipant(conversation_id=conversation.id, user_id=uid))
    await session.flush()
    logger.info(f"Group conversation {conversation.id} created with {len(members)} members")
    return conversation.id


async def hide_conversation(session: AsyncSession, conversation_id: str, user_id: str) -> None:
    participant = await _participant(session, conversation_id, user_id)
    participant.is_hidden = True
    await session.flush()


async def leave_group(session: AsyncSession, conversation_id: str, user_id: str) -> None:
    await _participant(session, conversation_id, user_id)
    conversation = await session.get(Conversation, conversation_id)
    if not conversation.is_group:
        raise ValidationError("Only group conversations can be left")

    await session.execute(
        delete(ConversationParticipant).where(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        )
    )
    profile = await session.get(Profile, user_id)
    session.add(
        Message(
            conversation_id=conversation_id,
            sender_id=user_id,
            content=f"{profile.full_name if profile else 'A member'} left the group",
            message_type="system_notification",
        )
    )
    await session.flush()


async def clear_chat(
    session: AsyncSession,
    conversation_id: str,
    user_id: str,
    hub: Optional[RealtimeHub] = None,
) -> int:
    """Delete every message in the conversation and publish the conversation UPDATE.

    Returns the number of messages removed.
    """
    await _participant(session, conversation_id, user_id)
    message_ids = select(Message.id).where(Message.conversation_id == conversation_id)
    await session.execute(
        delete(MessageReaction).where(MessageReaction.message_id.in_(message_ids))
    )
    result = await session.execute(
        delete(Message).where(Message.conversation_id == conversation_id)
    )
    conversation = await session.get(Conversation, conversation_id)
    conversation.last_message_at = None
    await session.commit()
    await (hub or get_hub()).publish_change(
        "conversations", "UPDATE", conversation_record(conversation)
    )
    logger.info(f"Conversation {conversation_id} cleared ({result.rowcount} messages)")
    return result.rowcount


# --- Messages ---


async def get_conversation_messages(
    session: AsyncSession, conversation_id: str, user_id: str
) -> list[MessageOut]:
    await _participant(session, conversation_id, user_id)
    result = await session.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .options(
            selectinload(Message.sender),
            selectinload(Message.reactions).selectinload(MessageReaction.user),
        )
        .order_by(Message.created_at, Message.id)
    )
    messages = result.scalars().all()

    reply_ids = {m.reply_to_message_id for m in messages if m.reply_to_message_id}
    replied = {}
    if reply_ids:
        rows = await session.execute(
            select(Message).where(Message.id.in_(reply_ids)).options(selectinload(Message.sender))
        )
        replied = {m.id: m for m in rows.scalars()}

    return [to_message_out(m, replied.get(m.reply_to_message_id)) for m in messages]


def to_message_out(message: Message, replied: Optional[Message] = None) -> MessageOut:
    replied_message = None
    if replied is not None:
        replied_message = RepliedMessage(
            content=None if replied.is_deleted else replied.content,
            sender_name=replied.sender.full_name if replied.sender else "Unknown",
            is_deleted=replied.is_deleted,
            attachment=None if replied.is_deleted else _attachment(replied),
        )
    return MessageOut(
        id=message.id,
        conversation_id=message.conversation_id,
        text=message.content,
        timestamp=message.created_at,
        sender=UserRef.from_profile(message.sender),
        attachment=_attachment(message),
        reply_to_message_id=message.reply_to_message_id,
        replied_message=replied_message,
        reactions=[
            ReactionOut(
                emoji=r.emoji,
                user_id=r.user_id,
                user_name=r.user.full_name if r.user else "Unknown",
            )
            for r in message.reactions
        ],
        is_deleted=message.is_deleted,
        is_forwarded=message.is_forwarded,
    )


async def send_message(
    session: AsyncSession,
    user_id: str,
    conversation_id: str,
    request: SendMessageRequest,
    hub: Optional[RealtimeHub] = None,
    config: Optional[PortalConfig] = None,
) -> MessageOut:
    """Store a message, notify participants and publish the INSERT.

    Commits before publishing so subscribers that re-read the conversation
    see the new row.
    """
    text = (request.text or "").strip()
    if not text and request.attachment is None:
        raise ValidationError("Message needs text or an attachment")
    await _participant(session, conversation_id, user_id)

    replied = None
    if request.reply_to_message_id:
        replied = await session.get(Message, request.reply_to_message_id)
        if replied is None or replied.conversation_id != conversation_id:
            raise ValidationError("Replied message is not in this conversation")

    message = Message(
        conversation_id=conversation_id,
        sender_id=user_id,
        content=text or None,
        reply_to_message_id=request.reply_to_message_id,
    )
    if request.message_id:
        message.id = request.message_id
    if request.attachment is not None:
        message.attachment_url = request.attachment.url
        message.attachment_name = request.attachment.name
        message.attachment_type = request.attachment.type
    session.add(message)
    await session.flush()

    conversation = await session.get(Conversation, conversation_id)
    conversation.last_message_at = message.created_at
    participants = await session.execute(
        select(ConversationParticipant).where(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.is_hidden.is_(True),
        )
    )
    for participant in participants.scalars():
        participant.is_hidden = False
    await session.flush()

    await notify_chat_message(session, message, config=config)
    await session.commit()

    hub = hub or get_hub()
    await hub.publish_change("messages", "INSERT", message_record(message))
    await hub.publish_change("conversations", "UPDATE", conversation_record(conversation))

    loaded = await session.scalar(
        select(Message)
        .where(Message.id == message.id)
        .options(
            selectinload(Message.sender),
            selectinload(Message.reactions).selectinload(MessageReaction.user),
        )
        .execution_options(populate_existing=True)
    )
    if replied is not None:
        replied = await session.scalar(
            select(Message)
            .where(Message.id == replied.id)
            .options(selectinload(Message.sender))
            .execution_options(populate_existing=True)
        )
    return to_message_out(loaded, replied)


async def delete_message(session: AsyncSession, message_id: str, user_id: str) -> None:
    """Soft delete: the row stays so replies can show it was deleted."""
    message = await session.get(Message, message_id)
    if message is None:
        raise NotFoundError(f"Message {message_id} not found")
    if message.sender_id != user_id:
        raise PermissionDeniedError("Only the sender can delete a message")
    message.is_deleted = True
    message.content = None
    message.attachment_url = None
    message.attachment_name = None
    message.attachment_type = None
    await session.flush()


async def toggle_reaction(
    session: AsyncSession, message_id: str, user_id: str, emoji: str
) -> bool:
    """Add or remove a reaction. Returns True if the reaction is now present."""
    message = await session.get(Message, message_id)
    if message is None:
        raise NotFoundError(f"Message {message_id} not found")
    await _participant(session, message.conversation_id, user_id)

    existing = await session.scalar(
        select(MessageReaction).where(
            MessageReaction.message_id == message_id,
            MessageReaction.user_id == user_id,
            MessageReaction.emoji == emoji,
        )
    )
    if existing is not None:
        await session.delete(existing)
        await session.flush()
        return False
    session.add(MessageReaction(message_id=message_id, user_id=user_id, emoji=emoji))
    await session.flush()
    return True


async def search_messages(
    session: AsyncSession, user_id: str, term: str, limit: int = 50
) -> list[MessageSearchHit]:
    term = (term or "").strip()
    if not term:
        return []
    mine = select(ConversationParticipant.conversation_id).where(
        ConversationParticipant.user_id == user_id
    )
    result = await session.execute(
        select(Message)
        .where(
            Message.conversation_id.in_(mine),
            Message.is_deleted.is_(False),
            Message.content.icontains(term, autoescape=True),
        )
        .options(selectinload(Message.sender))
        .order_by(Message.created_at.desc())
        .limit(limit)
    )
    messages = result.scalars().all()
    names = {c.id: c.name for c in await get_user_conversations(session, user_id)}
    return [
        MessageSearchHit(
            message_id=m.id,
            conversation_id=m.conversation_id,
            conversation_name=names.get(m.conversation_id, "Chat"),
            text=m.content or "",
            timestamp=m.created_at,
            sender_name=m.sender.full_name if m.sender else "Unknown",
        )
        for m in messages
    ]
