"""Tests for the chat service layer."""

import pytest
from sqlalchemy import select

from portal.chat import service
from portal.chat.realtime import CHANGES, RealtimeHub
from portal.db import get_session
from portal.db.models import ConversationParticipant, Message, PendingNotification, Profile
from portal.errors import NotFoundError, PermissionDeniedError, ValidationError
from portal.models import Attachment, SendMessageRequest
from portal.notifications import inbox


async def _direct(users, a="alice", b="bob") -> str:
    async with get_session() as session:
        return await service.create_or_get_conversation(session, users[a], users[b])


async def _send(users, conversation_id, sender="alice", text="hello", hub=None, **kwargs):
    async with get_session() as session:
        return await service.send_message(
            session, users[sender], conversation_id,
            SendMessageRequest(text=text, **kwargs), hub=hub or RealtimeHub(),
        )


class TestConversations:
    @pytest.mark.asyncio
    async def test_direct_conversation_reused(self, users):
        first = await _direct(users)
        second = await _direct(users, "bob", "alice")
        assert first == second

    @pytest.mark.asyncio
    async def test_direct_conversation_validation(self, users):
        async with get_session() as session:
            with pytest.raises(ValidationError):
                await service.create_or_get_conversation(session, users["alice"], users["alice"])
            with pytest.raises(NotFoundError):
                await service.create_or_get_conversation(session, users["alice"], "nobody")

    @pytest.mark.asyncio
    async def test_list_names_and_last_message(self, users):
        direct = await _direct(users)
        async with get_session() as session:
            group = await service.create_group_conversation(
                session, users["alice"], "  Crew ", [users["bob"], users["carol"]]
            )
        await _send(users, direct, text="latest news")

        async with get_session() as session:
            convs = await service.get_user_conversations(session, users["alice"])

        assert [c.id for c in convs] == [direct, group]
        assert convs[0].name == "Bob Brown"
        assert convs[0].last_message == "latest news"
        assert convs[1].name == "Crew"
        assert convs[1].last_message == "No messages yet."
        assert len(convs[1].members) == 3

    @pytest.mark.asyncio
    async def test_group_validation(self, users):
        async with get_session() as session:
            with pytest.raises(ValidationError):
                await service.create_group_conversation(session, users["alice"], " ", [users["bob"]])
            with pytest.raises(ValidationError):
                await service.create_group_conversation(session, users["alice"], "Solo", [users["alice"]])

    @pytest.mark.asyncio
    async def test_hide_then_new_message_unhides(self, users):
        conv = await _direct(users)
        async with get_session() as session:
            await service.hide_conversation(session, conv, users["bob"])
            assert await service.get_user_conversations(session, users["bob"]) == []

        await _send(users, conv)

        async with get_session() as session:
            assert [c.id for c in await service.get_user_conversations(session, users["bob"])] == [conv]

    @pytest.mark.asyncio
    async def test_reopening_direct_unhides(self, users):
        conv = await _direct(users)
        async with get_session() as session:
            await service.hide_conversation(session, conv, users["alice"])
        assert await _direct(users) == conv
        async with get_session() as session:
            assert len(await service.get_user_conversations(session, users["alice"])) == 1

    @pytest.mark.asyncio
    async def test_leave_group(self, users):
        async with get_session() as session:
            group = await service.create_group_conversation(
                session, users["alice"], "Crew", [users["bob"], users["carol"]]
            )
        async with get_session() as session:
            await service.leave_group(session, group, users["carol"])

        async with get_session() as session:
            ids = (await session.execute(
                select(ConversationParticipant.user_id).where(
                    ConversationParticipant.conversation_id == group
                )
            )).scalars().all()
            messages = await service.get_conversation_messages(session, group, users["alice"])
            with pytest.raises(PermissionDeniedError):
                await service.get_conversation_messages(session, group, users["carol"])

        assert users["carol"] not in ids
        assert messages[-1].text == "Carol Cruz left the group"

    @pytest.mark.asyncio
    async def test_leave_direct_rejected(self, users):
        conv = await _direct(users)
        async with get_session() as session:
            with pytest.raises(ValidationError):
                await service.leave_group(session, conv, users["alice"])

    @pytest.mark.asyncio
    async def test_clear_chat(self, users):
        conv = await _direct(users)
        sent = await _send(users, conv, text="one")
        await _send(users, conv, sender="bob", text="two")
        async with get_session() as session:
            await service.toggle_reaction(session, sent.id, users["bob"], "👍")

        async with get_session() as session:
            assert await service.clear_chat(session, conv, users["bob"]) == 2

        async with get_session() as session:
            assert await service.get_conversation_messages(session, conv, users["alice"]) == []
            convs = await service.get_user_conversations(session, users["alice"])
        assert convs[0].last_message == "No messages yet."

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, users):
        async with get_session() as session:
            with pytest.raises(NotFoundError):
                await service.get_conversation_messages(session, "missing", users["alice"])


class TestMessages:
    @pytest.mark.asyncio
    async def test_send_publishes_insert(self, users):
        conv = await _direct(users)
        hub = RealtimeHub()
        received = []
        hub.subscribe(f"chat:{conv}", CHANGES, received.append,
                      {"event": "INSERT", "table": "messages", "conversation_id": conv})

        sent = await _send(users, conv, text="  hi there  ", hub=hub)

        assert sent.text == "hi there"
        assert sent.sender.id == users["alice"]
        assert len(received) == 1
        assert received[0].new["id"] == sent.id
        assert received[0].new["sender_id"] == users["alice"]

    @pytest.mark.asyncio
    async def test_subscriber_sees_committed_row(self, users):
        conv = await _direct(users)
        hub = RealtimeHub()
        seen = []

        async def reread(change):
            async with get_session() as session:
                seen.append(await session.get(Message, change.new["id"]))

        hub.subscribe("chat", CHANGES, reread, {"table": "messages"})
        await _send(users, conv, hub=hub)
        assert seen[0] is not None

    @pytest.mark.asyncio
    async def test_client_message_id_kept(self, users):
        conv = await _direct(users)
        sent = await _send(users, conv, message_id="3f6c3c2e-0000-4000-8000-000000000001")
        assert sent.id == "3f6c3c2e-0000-4000-8000-000000000001"

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, users):
        conv = await _direct(users)
        with pytest.raises(ValidationError):
            await _send(users, conv, text="   ")

    @pytest.mark.asyncio
    async def test_attachment_only(self, users):
        conv = await _direct(users)
        await _send(users, conv, text=None,
                    attachment=Attachment(name="plan.pdf", url="https://files.test/plan.pdf",
                                          type="application/pdf"))
        async with get_session() as session:
            convs = await service.get_user_conversations(session, users["bob"])
            messages = await service.get_conversation_messages(session, conv, users["bob"])
        assert convs[0].last_message == "📎 plan.pdf"
        assert messages[0].attachment.type == "application/pdf"

    @pytest.mark.asyncio
    async def test_outsider_cannot_send(self, users):
        conv = await _direct(users)
        with pytest.raises(PermissionDeniedError):
            await _send(users, conv, sender="carol")

    @pytest.mark.asyncio
    async def test_reply_preview_and_soft_delete(self, users):
        conv = await _direct(users)
        original = await _send(users, conv, text="original")
        reply = await _send(users, conv, sender="bob", text="answer", reply_to_message_id=original.id)
        assert reply.replied_message.content == "original"
        assert reply.replied_message.sender_name == "Alice Anders"

        async with get_session() as session:
            with pytest.raises(PermissionDeniedError):
                await service.delete_message(session, original.id, users["bob"])
            await service.delete_message(session, original.id, users["alice"])

        async with get_session() as session:
            messages = await service.get_conversation_messages(session, conv, users["bob"])
        assert messages[0].is_deleted is True
        assert messages[0].text is None
        assert messages[1].replied_message.is_deleted is True
        assert messages[1].replied_message.content is None

    @pytest.mark.asyncio
    async def test_reply_must_be_in_same_conversation(self, users):
        conv = await _direct(users)
        other = await _direct(users, "alice", "carol")
        elsewhere = await _send(users, other, text="elsewhere")
        with pytest.raises(ValidationError):
            await _send(users, conv, reply_to_message_id=elsewhere.id)

    @pytest.mark.asyncio
    async def test_toggle_reaction(self, users):
        conv = await _direct(users)
        sent = await _send(users, conv)
        async with get_session() as session:
            assert await service.toggle_reaction(session, sent.id, users["bob"], "🎉") is True
            messages = await service.get_conversation_messages(session, conv, users["alice"])
            assert [(r.emoji, r.user_name) for r in messages[0].reactions] == [("🎉", "Bob Brown")]
            assert await service.toggle_reaction(session, sent.id, users["bob"], "🎉") is False

    @pytest.mark.asyncio
    async def test_send_notifies_other_participants(self, users):
        conv = await _direct(users)
        await _send(users, conv, text="first")
        await _send(users, conv, text="second")

        async with get_session() as session:
            bob_inbox = await inbox.list_notifications(session, users["bob"])
            pending = (await session.execute(select(PendingNotification))).scalars().all()

        assert len(bob_inbox) == 2
        assert bob_inbox[0].title == "New message from Alice Anders"
        # Second message folds into the pending bundle
        assert len(pending) == 1
        assert pending[0].recipient_id == users["bob"]
        assert pending[0].context_data["preview"] == "first"

    @pytest.mark.asyncio
    async def test_comment_preference_silences_chat(self, users):
        async with get_session() as session:
            bob = await session.get(Profile, users["bob"])
            bob.notification_preferences = {"comment": False}
        conv = await _direct(users)
        await _send(users, conv)
        async with get_session() as session:
            assert await inbox.unread_count(session, users["bob"]) == 0

    @pytest.mark.asyncio
    async def test_channels_off_keeps_in_app_only(self, users):
        async with get_session() as session:
            bob = await session.get(Profile, users["bob"])
            bob.notification_preferences = {"comment": {"enabled": True, "whatsapp": False, "email": False}}
            carol = await session.get(Profile, users["carol"])
            carol.notification_preferences = {"comment": {"whatsapp": False}}
        async with get_session() as session:
            group = await service.create_group_conversation(
                session, users["alice"], "Crew", [users["bob"], users["carol"]]
            )
        await _send(users, group, text="hi")

        async with get_session() as session:
            assert await inbox.unread_count(session, users["bob"]) == 1
            pending = (await session.execute(select(PendingNotification))).scalars().all()
        assert [p.recipient_id for p in pending] == [users["carol"]]


class TestSearch:
    @pytest.mark.asyncio
    async def test_search_own_conversations_only(self, users):
        mine = await _direct(users)
        theirs = await _direct(users, "bob", "carol")
        await _send(users, mine, text="Venue deposit paid")
        await _send(users, theirs, sender="bob", text="venue gossip")
        deleted = await _send(users, mine, text="venue secret")
        async with get_session() as session:
            await service.delete_message(session, deleted.id, users["alice"])

        async with get_session() as session:
            hits = await service.search_messages(session, users["alice"], "VENUE")
            assert await service.search_messages(session, users["alice"], "  ") == []

        assert [h.text for h in hits] == ["Venue deposit paid"]
        assert hits[0].conversation_name == "Bob Brown"
        assert hits[0].sender_name == "Alice Anders"

    @pytest.mark.asyncio
    async def test_wildcards_are_literal(self, users):
        conv = await _direct(users)
        await _send(users, conv, text="100% done")
        await _send(users, conv, text="1000 done")
        async with get_session() as session:
            hits = await service.search_messages(session, users["bob"], "0%")
        assert [h.text for h in hits] == ["100% done"]
