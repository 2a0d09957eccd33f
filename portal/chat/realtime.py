"""In-process realtime hub.

Channels carry two kinds of events:

- ``postgres_changes``: row changes published by the service layer
  (``publish_change``), matched against each subscription's filter;
- broadcasts: ephemeral events such as typing indicators, which by default
  are not echoed back to the sender.

Callbacks may be plain functions or coroutines. A failing callback is
logged and does not keep the event from reaching other subscribers.
"""

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

CHANGES = "postgres_changes"

_ids = itertools.count(1)


@dataclass
class ChangeEvent:
    table: str
    event: str  # INSERT / UPDATE / DELETE
    new: dict = field(default_factory=dict)
    old: dict = field(default_factory=dict)


@dataclass
class Subscription:
    channel: str
    event: str
    callback: Callable[[Any], Any]
    filter: Optional[dict] = None
    subscriber_id: Optional[str] = None
    receive_own: bool = False
    id: int = field(default_factory=lambda: next(_ids))

    def matches_change(self, change: ChangeEvent) -> bool:
        criteria = dict(self.filter or {})
        if criteria.pop("event", "*") not in ("*", change.event):
            return False
        if criteria.pop("table", change.table) != change.table:
            return False
        record = change.new or change.old
        return all(record.get(key) == value for key, value in criteria.items())


class RealtimeHub:
    """Fan-out of change and broadcast events to channel subscribers."""

    def __init__(self):
        self._subscriptions: dict[int, Subscription] = {}

    def subscribe(
        self,
        channel: str,
        event: str,
        callback: Callable[[Any], Any],
        filter: Optional[dict] = None,
        *,
        subscriber_id: Optional[str] = None,
        receive_own: bool = False,
    ) -> Subscription:
        """Register a callback.

        Args:
            channel: Channel name, e.g. ``chat:<conversation_id>``
            event: ``postgres_changes`` or a broadcast event name
            filter: For changes: ``{"event": "INSERT", "table": "messages",
                "<column>": value, ...}``
            subscriber_id: Who is listening (used for the ``self`` flag)
            receive_own: Deliver broadcasts sent by ``subscriber_id`` too
        """
        sub = Subscription(
            channel=channel,
            event=event,
            callback=callback,
            filter=filter,
            subscriber_id=subscriber_id,
            receive_own=receive_own,
        )
        self._subscriptions[sub.id] = sub
        logger.debug(f"Subscribed #{sub.id} to {channel}/{event}")
        return sub

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self._subscriptions.pop(subscription.id, None) is not None

    def remove_channel(self, channel: str) -> int:
        ids = [sid for sid, sub in self._subscriptions.items() if sub.channel == channel]
        for sid in ids:
            del self._subscriptions[sid]
        return len(ids)

    def subscriptions(self, channel: Optional[str] = None) -> list[Subscription]:
        return [
            sub for sub in self._subscriptions.values()
            if channel is None or sub.channel == channel
        ]

    async def _deliver(self, subs: list[Subscription], payload: Any) -> int:
        async def _call_safe(sub: Subscription) -> bool:
            try:
                result = sub.callback(payload)
                if inspect.isawaitable(result):
                    await result
                return True
            except Exception as e:
                logger.error(
                    f"Realtime callback #{sub.id} on {sub.channel} failed: {e}",
                    exc_info=True,
                )
                return False

        results = await asyncio.gather(*(_call_safe(sub) for sub in subs))
        return sum(results)

    async def publish_change(
        self,
        table: str,
        event: str,
        record: dict,
        old: Optional[dict] = None,
    ) -> int:
        """Deliver a row change to every matching subscription. Returns deliveries."""
        change = ChangeEvent(table=table, event=event, new=record, old=old or {})
        subs = [
            sub for sub in list(self._subscriptions.values())
            if sub.event == CHANGES and sub.matches_change(change)
        ]
        return await self._deliver(subs, change)

    async def broadcast(
        self,
        channel: str,
        event: str,
        payload: dict,
        sender: Optional[str] = None,
    ) -> int:
        subs = [
            sub for sub in list(self._subscriptions.values())
            if sub.channel == channel
            and sub.event == event
            and (sub.receive_own or sender is None or sub.subscriber_id != sender)
        ]
        return await self._deliver(subs, payload)


_hub: Optional[RealtimeHub] = None


def get_hub() -> RealtimeHub:
    global _hub
    if _hub is None:
        _hub = RealtimeHub()
    return _hub


def reset_hub() -> None:
    global _hub
    _hub = None
