"""Per-user chat session.

Keeps the conversation cache in sync with the server: loads conversations
and messages, follows the selected conversation on the realtime hub,
shows a typing indicator and sends messages optimistically.
"""

import asyncio
import logging
from typing import Optional, Protocol

from portal.chat import service
from portal.chat.cache import ConversationCache
from portal.chat.realtime import CHANGES, ChangeEvent, RealtimeHub, Subscription, get_hub
from portal.db import get_session
from portal.models import (
    Attachment,
    ConversationOut,
    MessageOut,
    MessageSearchHit,
    SendMessageRequest,
    UserRef,
)

logger = logging.getLogger(__name__)

TYPING_EVENT = "typing"
CONVERSATIONS_CHANNEL = "conversations-list"
MESSAGES_CHANNEL = "messages-global"


def channel_name(conversation_id: str) -> str:
    return f"chat:{conversation_id}"


class ChatBackend(Protocol):
    """Server calls a chat session needs."""

    async def fetch_conversations(self) -> list[ConversationOut]: ...

    async def fetch_messages(self, conversation_id: str) -> list[MessageOut]: ...

    async def send_message(
        self, conversation_id: str, request: SendMessageRequest
    ) -> MessageOut: ...

    async def create_or_get_conversation(self, other_user_id: str) -> str: ...

    async def create_group_conversation(self, name: str, participant_ids: list[str]) -> str: ...

    async def clear_chat(self, conversation_id: str) -> None: ...

    async def search_messages(self, term: str) -> list[MessageSearchHit]: ...


class ServiceChatBackend:
    """``ChatBackend`` on top of ``portal.chat.service``, one DB session per call."""

    def __init__(self, user_id: str, hub: Optional[RealtimeHub] = None):
        self.user_id = user_id
        self.hub = hub

    async def fetch_conversations(self) -> list[ConversationOut]:
        async with get_session() as session:
            return await service.get_user_conversations(session, self.user_id)

    async def fetch_messages(self, conversation_id: str) -> list[MessageOut]:
        async with get_session() as session:
            return await service.get_conversation_messages(session, conversation_id, self.user_id)

    async def send_message(self, conversation_id: str, request: SendMessageRequest) -> MessageOut:
        async with get_session() as session:
            return await service.send_message(
                session, self.user_id, conversation_id, request, hub=self.hub
            )

    async def create_or_get_conversation(self, other_user_id: str) -> str:
        async with get_session() as session:
            return await service.create_or_get_conversation(session, self.user_id, other_user_id)

    async def create_group_conversation(self, name: str, participant_ids: list[str]) -> str:
        async with get_session() as session:
            return await service.create_group_conversation(
                session, self.user_id, name, participant_ids
            )

    async def clear_chat(self, conversation_id: str) -> None:
        async with get_session() as session:
            await service.clear_chat(session, conversation_id, self.user_id, hub=self.hub)

    async def search_messages(self, term: str) -> list[MessageSearchHit]:
        async with get_session() as session:
            return await service.search_messages(session, self.user_id, term)


class ChatSession:
    def __init__(
        self,
        user: UserRef,
        backend: ChatBackend,
        hub: Optional[RealtimeHub] = None,
        typing_timeout: float = 1.5,
        search_debounce: float = 0.3,
    ):
        self.user = user
        self.backend = backend
        self.hub = hub or get_hub()
        self.cache = ConversationCache()
        self.typing_timeout = typing_timeout
        self.search_debounce = search_debounce

        self.selected_id: Optional[str] = None
        self.someone_typing = False
        self.error: Optional[str] = None
        self.search_results: list[MessageSearchHit] = []

        self._subscriptions: list[Subscription] = []
        self._global_subscriptions: list[Subscription] = []
        self._typing_timer: Optional[asyncio.TimerHandle] = None
        self._search_task: Optional[asyncio.Task] = None

    @property
    def conversations(self) -> list[ConversationOut]:
        return self.cache.conversations

    @property
    def selected(self) -> Optional[ConversationOut]:
        return self.cache.get(self.selected_id) if self.selected_id else None

    async def refresh_conversations(self) -> None:
        self.cache.replace_conversations(await self.backend.fetch_conversations())

    async def load_messages(self, conversation_id: str) -> None:
        self.cache.set_messages(conversation_id, await self.backend.fetch_messages(conversation_id))

    # --- Realtime ---

    async def start(self) -> None:
        """Load conversations and follow changes that affect the whole list."""
        await self.refresh_conversations()
        if self._global_subscriptions:
            return
        self._global_subscriptions = [
            self.hub.subscribe(
                CONVERSATIONS_CHANNEL,
                CHANGES,
                self._on_conversation_change,
                filter={"table": "conversations"},
                subscriber_id=self.user.id,
            ),
            self.hub.subscribe(
                MESSAGES_CHANNEL,
                CHANGES,
                self._on_any_insert,
                filter={"event": "INSERT", "table": "messages"},
                subscriber_id=self.user.id,
            ),
        ]

    async def _on_conversation_change(self, change: ChangeEvent) -> None:
        await self.refresh_conversations()

    async def _on_any_insert(self, change: ChangeEvent) -> None:
        """Open the conversation of an incoming message when nothing is selected."""
        if change.new.get("sender_id") == self.user.id or self.selected_id is not None:
            return
        await self.refresh_conversations()
        conversation_id = change.new.get("conversation_id")
        if conversation_id and self.cache.get(conversation_id) is not None:
            await self.select_conversation(conversation_id)

    def _unsubscribe(self) -> None:
        for sub in self._subscriptions:
            self.hub.unsubscribe(sub)
        self._subscriptions = []

    async def select_conversation(self, conversation_id: Optional[str]) -> None:
        self._unsubscribe()
        self._clear_typing()
        self.selected_id = conversation_id
        if conversation_id is None:
            return

        if self.cache.get(conversation_id) is None:
            await self.refresh_conversations()
        await self.load_messages(conversation_id)

        channel = channel_name(conversation_id)
        self._subscriptions = [
            self.hub.subscribe(
                channel,
                CHANGES,
                self._on_insert,
                filter={"event": "INSERT", "table": "messages", "conversation_id": conversation_id},
                subscriber_id=self.user.id,
            ),
            self.hub.subscribe(
                channel, TYPING_EVENT, self._on_typing, subscriber_id=self.user.id
            ),
        ]

    async def _on_insert(self, change: ChangeEvent) -> None:
        if change.new.get("sender_id") == self.user.id:
            return
        await self.refresh_conversations()
        conversation_id = change.new.get("conversation_id")
        if conversation_id and conversation_id == self.selected_id:
            await self.load_messages(conversation_id)

    def _on_typing(self, payload: dict) -> None:
        if payload.get("user_id") == self.user.id:
            return
        self.someone_typing = True
        if self._typing_timer is not None:
            self._typing_timer.cancel()
        loop = asyncio.get_running_loop()
        self._typing_timer = loop.call_later(self.typing_timeout, self._clear_typing)

    def _clear_typing(self) -> None:
        self.someone_typing = False
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None

    async def send_typing(self) -> None:
        if self.selected_id is None:
            return
        await self.hub.broadcast(
            channel_name(self.selected_id),
            TYPING_EVENT,
            {"user_id": self.user.id, "user_name": self.user.name},
            sender=self.user.id,
        )

    # --- Actions ---

    async def send_message(
        self,
        text: str,
        attachment: Optional[Attachment] = None,
        reply_to_message_id: Optional[str] = None,
    ) -> Optional[MessageOut]:
        """Optimistic send. Returns None (and sets ``error``) if the server rejects it."""
        conversation_id = self.selected_id
        if conversation_id is None or (not text.strip() and attachment is None):
            return None
        self.error = None

        pending = self.cache.add_optimistic(
            conversation_id, self.user, text, attachment, reply_to_message_id
        )
        try:
            stored = await self.backend.send_message(
                conversation_id,
                SendMessageRequest(
                    text=text, attachment=attachment, reply_to_message_id=reply_to_message_id
                ),
            )
        except Exception as e:
            logger.error(f"Sending message to {conversation_id} failed: {e}")
            self.cache.rollback(conversation_id, pending.id)
            self.error = str(e)
            return None

        self.cache.confirm(conversation_id, pending.id, stored)
        await self.refresh_conversations()
        return stored

    async def start_new_chat(self, other_user_id: str) -> str:
        conversation_id = await self.backend.create_or_get_conversation(other_user_id)
        await self.refresh_conversations()
        await self.select_conversation(conversation_id)
        return conversation_id

    async def start_group_chat(self, name: str, participant_ids: list[str]) -> str:
        conversation_id = await self.backend.create_group_conversation(name, participant_ids)
        await self.refresh_conversations()
        await self.select_conversation(conversation_id)
        return conversation_id

    async def clear_chat(self, conversation_id: str) -> None:
        await self.backend.clear_chat(conversation_id)
        self.cache.clear_history(conversation_id)

    async def _run_search(self, term: str) -> list[MessageSearchHit]:
        await asyncio.sleep(self.search_debounce)
        return await self.backend.search_messages(term)

    async def search(self, term: str) -> Optional[list[MessageSearchHit]]:
        """Debounced search. Superseded calls return None; the last one hits the server."""
        if self._search_task is not None and not self._search_task.done():
            self._search_task.cancel()
        if not term.strip():
            self.search_results = []
            return []

        task = asyncio.ensure_future(self._run_search(term))
        self._search_task = task
        await asyncio.wait({task})
        if task.cancelled():
            return None
        self.search_results = task.result()
        return self.search_results

    async def close(self) -> None:
        self._unsubscribe()
        for sub in self._global_subscriptions:
            self.hub.unsubscribe(sub)
        self._global_subscriptions = []
        self._clear_typing()
        if self._search_task is not None and not self._search_task.done():
            self._search_task.cancel()
