"""Local conversation/message cache used by ``ChatSession``.

Holds the conversation list and any messages loaded for it, and applies
optimistic updates: a message is shown under a temporary id until the
server confirms it, or removed again if sending fails.
"""

import uuid
from typing import Optional

from portal.db.models import utcnow
from portal.models import Attachment, ConversationOut, MessageOut, UserRef

TEMP_PREFIX = "temp-"


def new_temp_id() -> str:
    return f"{TEMP_PREFIX}{uuid.uuid4()}"


def _preview(message: MessageOut) -> str:
    if message.text:
        return message.text
    if message.attachment:
        return f"📎 {message.attachment.name}"
    return ""


class ConversationCache:
    def __init__(self):
        self._conversations: dict[str, ConversationOut] = {}

    @property
    def conversations(self) -> list[ConversationOut]:
        """Newest activity first."""
        return sorted(
            self._conversations.values(), key=lambda c: c.last_message_at, reverse=True
        )

    def get(self, conversation_id: str) -> Optional[ConversationOut]:
        return self._conversations.get(conversation_id)

    def messages(self, conversation_id: str) -> list[MessageOut]:
        conv = self._conversations.get(conversation_id)
        return list(conv.messages) if conv else []

    def replace_conversations(self, conversations: list[ConversationOut]) -> None:
        """Swap in a fresh list, keeping messages already loaded."""
        fresh = {}
        for conv in conversations:
            existing = self._conversations.get(conv.id)
            if existing is not None and existing.messages and not conv.messages:
                conv = conv.model_copy(update={"messages": existing.messages})
            fresh[conv.id] = conv
        self._conversations = fresh

    def set_messages(self, conversation_id: str, messages: list[MessageOut]) -> None:
        conv = self._conversations.get(conversation_id)
        if conv is not None:
            conv.messages = list(messages)

    def add_optimistic(
        self,
        conversation_id: str,
        sender: UserRef,
        text: Optional[str],
        attachment: Optional[Attachment] = None,
        reply_to_message_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> MessageOut:
        message = MessageOut(
            id=message_id or new_temp_id(),
            conversation_id=conversation_id,
            text=text,
            timestamp=utcnow(),
            sender=sender,
            attachment=attachment,
            reply_to_message_id=reply_to_message_id,
        )
        conv = self._conversations.get(conversation_id)
        if conv is not None:
            conv.messages.append(message)
            conv.last_message = _preview(message)
            conv.last_message_at = message.timestamp
        return message

    def confirm(self, conversation_id: str, temp_id: str, message: MessageOut) -> None:
        """Replace the optimistic entry with the stored message."""
        conv = self._conversations.get(conversation_id)
        if conv is None:
            return
        replaced = False
        messages = []
        for m in conv.messages:
            if m.id == temp_id:
                if not replaced:
                    messages.append(message)
                    replaced = True
            elif m.id != message.id:
                messages.append(m)
        if not replaced:
            messages.append(message)
        conv.messages = messages

    def rollback(self, conversation_id: str, temp_id: str) -> None:
        conv = self._conversations.get(conversation_id)
        if conv is None:
            return
        conv.messages = [m for m in conv.messages if m.id != temp_id]
        if conv.messages:
            last = conv.messages[-1]
            conv.last_message = _preview(last)
            conv.last_message_at = last.timestamp

    def apply_incoming(self, message: MessageOut) -> bool:
        """Add a message pushed from elsewhere. Returns False for duplicates."""
        conv = self._conversations.get(message.conversation_id)
        if conv is None:
            return False
        if any(m.id == message.id for m in conv.messages):
            return False
        conv.messages.append(message)
        conv.last_message = _preview(message)
        conv.last_message_at = message.timestamp
        return True

    def clear_history(self, conversation_id: str) -> None:
        conv = self._conversations.get(conversation_id)
        if conv is not None:
            conv.messages = []
            conv.last_message = "Chat cleared"
            conv.last_message_at = utcnow()

    def remove(self, conversation_id: str) -> None:
        self._conversations.pop(conversation_id, None)
