"""Base adapter protocol for notification channels."""

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class MessagingAdapter(Protocol):
    """Protocol for text-message channel adapters (WhatsApp providers)."""

    last_error: Optional[str]

    @property
    def channel_name(self) -> str:
        """Human-readable channel name."""
        ...

    @property
    def is_enabled(self) -> bool:
        """Whether this channel is configured and enabled."""
        ...

    async def send(self, to: str, text: str) -> bool:
        """Send a message. Returns True on success, sets ``last_error`` otherwise."""
        ...

    async def health_check(self) -> bool:
        """Verify channel connectivity. Returns True if healthy."""
        ...
