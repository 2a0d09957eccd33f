"""
Chat API Endpoints
"""

import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth import get_current_user, verify_token
from portal.chat import service
from portal.chat.realtime import CHANGES, ChangeEvent, get_hub
from portal.chat.session import TYPING_EVENT, channel_name
from portal.config import get_config
from portal.db import get_db, get_session
from portal.db.models import Profile
from portal.models import (
    ConversationOut,
    DirectConversationRequest,
    GroupConversationRequest,
    MessageOut,
    MessageSearchHit,
    ReactionToggle,
    SendMessageRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/conversations", response_model=list[ConversationOut])
async def list_conversations(
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return await service.get_user_conversations(db, current_user.id)


@router.post("/conversations/direct")
async def start_direct_conversation(
    request: DirectConversationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    conversation_id = await service.create_or_get_conversation(
        db, current_user.id, request.other_user_id
    )
    await db.commit()
    return {"conversation_id": conversation_id}


@router.post("/conversations/group", status_code=201)
async def start_group_conversation(
    request: GroupConversationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    conversation_id = await service.create_group_conversation(
        db, current_user.id, request.name, request.participant_ids
    )
    await db.commit()
    return {"conversation_id": conversation_id}


@router.get("/conversations/{conversation_id}/messages", response_model=list[MessageOut])
async def list_messages(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return await service.get_conversation_messages(db, conversation_id, current_user.id)


@router.post(
    "/conversations/{conversation_id}/messages", response_model=MessageOut, status_code=201
)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return await service.send_message(db, current_user.id, conversation_id, request)


@router.delete("/conversations/{conversation_id}/messages")
async def clear_chat(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    removed = await service.clear_chat(db, conversation_id, current_user.id)
    await db.commit()
    return {"removed": removed}


@router.post("/conversations/{conversation_id}/hide", status_code=204)
async def hide_conversation(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    await service.hide_conversation(db, conversation_id, current_user.id)
    await db.commit()


@router.post("/conversations/{conversation_id}/leave", status_code=204)
async def leave_group(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    await service.leave_group(db, conversation_id, current_user.id)
    await db.commit()


@router.post("/messages/{message_id}/reactions")
async def toggle_reaction(
    message_id: str,
    request: ReactionToggle,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    added = await service.toggle_reaction(db, message_id, current_user.id, request.emoji)
    await db.commit()
    return {"added": added}


@router.delete("/messages/{message_id}", status_code=204)
async def delete_message(
    message_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    await service.delete_message(db, message_id, current_user.id)
    await db.commit()


@router.get("/search", response_model=list[MessageSearchHit])
async def search_messages(
    q: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    limit = get_config().chat.search_limit
    return await service.search_messages(db, current_user.id, q, limit=limit)


@router.websocket("/ws/{conversation_id}")
async def conversation_socket(websocket: WebSocket, conversation_id: str, token: str = Query(...)):
    """Realtime feed for one conversation: new messages and typing broadcasts.

    Clients send ``{"type": "typing"}`` to broadcast their typing state.
    """
    try:
        user_id = verify_token(token).user_id
        async with get_session() as session:
            await service.get_conversation_messages(session, conversation_id, user_id)
    except Exception as e:
        logger.info(f"Rejected chat socket for {conversation_id}: {e}")
        await websocket.close(code=4403)
        return

    await websocket.accept()
    hub = get_hub()
    channel = channel_name(conversation_id)

    async def forward_change(change: ChangeEvent):
        await websocket.send_json({"type": "message", "event": change.event, "record": change.new})

    async def forward_typing(payload: dict):
        await websocket.send_json({"type": TYPING_EVENT, **payload})

    subscriptions = [
        hub.subscribe(
            channel,
            CHANGES,
            forward_change,
            filter={"event": "INSERT", "table": "messages", "conversation_id": conversation_id},
            subscriber_id=user_id,
        ),
        hub.subscribe(channel, TYPING_EVENT, forward_typing, subscriber_id=user_id),
    ]
    try:
        while True:
            data = await websocket.receive_json()
            if data.get("type") == TYPING_EVENT:
                await hub.broadcast(channel, TYPING_EVENT, {"user_id": user_id}, sender=user_id)
    except WebSocketDisconnect:
        pass
    finally:
        for sub in subscriptions:
            hub.unsubscribe(sub)
