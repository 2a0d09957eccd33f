"""Per-user notification preference checks.

Preferences are a JSON object keyed by notification type. A type maps to
either a bool or an object like ``{"enabled": true, "whatsapp": false,
"email": true}``. Anything missing counts as enabled.
"""

from typing import Any, Optional


def _entry(prefs: Optional[dict], notification_type: str) -> Any:
    if not isinstance(prefs, dict):
        return None
    return prefs.get(notification_type)


def is_enabled(prefs: Optional[dict], notification_type: str) -> bool:
    entry = _entry(prefs, notification_type)
    if isinstance(entry, dict):
        return entry.get("enabled") is not False
    return entry is not False


def channel_enabled(prefs: Optional[dict], notification_type: str, channel: str) -> bool:
    """Type enabled and the channel toggle (if any) not switched off."""
    if not is_enabled(prefs, notification_type):
        return False
    entry = _entry(prefs, notification_type)
    if isinstance(entry, dict):
        return entry.get(channel) is not False
    return True
