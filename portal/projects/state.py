"""Persisted project-list view state.

Two backends, mirroring how the portal keeps list state between visits:

- query parameters, so a filtered view can be shared as a URL;
- a small JSON key/value store with per-item expiry, used to remember each
  user's last view.
"""

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Literal, Optional

from portal.projects.filters import DateRange, ProjectFilters, SortConfig

logger = logging.getLogger(__name__)

View = Literal["table", "list", "kanban", "tasks", "tasks-kanban"]
VIEWS = ("table", "list", "kanban", "tasks", "tasks-kanban")
DATE_FIELDS = ("schedule", "payment_due_date")

# Rough browser-storage quota, only used for reporting
STORAGE_QUOTA_BYTES = 5 * 1024 * 1024


@dataclass
class FilterState:
    filters: ProjectFilters = field(default_factory=ProjectFilters)
    sort: SortConfig = field(default_factory=SortConfig)
    view: View = "table"


# --- Query parameters ---


def _join(values: list[str]) -> str:
    return ",".join(v for v in values if v)


def _split(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def _parse_date(raw: Optional[str]) -> Optional[date]:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        logger.debug(f"Ignoring malformed date parameter: {raw!r}")
        return None


def to_query_params(state: FilterState) -> dict[str, str]:
    """Serialize state; default values are left out to keep URLs short."""
    f = state.filters
    params: dict[str, str] = {}
    if f.search:
        params["q"] = f.search
    if f.date_range:
        params["from"] = f.date_range.start.isoformat()
        if f.date_range.end:
            params["to"] = f.date_range.end.isoformat()
    if f.date_field != "schedule":
        params["date_field"] = f.date_field
    if f.owner_ids:
        params["owner"] = _join(f.owner_ids)
    if f.member_ids:
        params["member"] = _join(f.member_ids)
    if f.excluded_statuses:
        params["hide"] = _join(f.excluded_statuses)
    if f.multi_person_only:
        params["multi"] = "1"

    default_sort = SortConfig()
    if state.sort.key != default_sort.key:
        params["sort"] = state.sort.key or ""
    if state.sort.direction != default_sort.direction:
        params["dir"] = "desc"
    if state.view != "table":
        params["view"] = state.view
    return params


def from_query_params(params: dict[str, Any]) -> FilterState:
    """Parse query parameters; anything unknown or malformed falls back to defaults."""
    start = _parse_date(params.get("from"))
    end = _parse_date(params.get("to"))
    date_range = None
    if start:
        date_range = DateRange(start=start, end=end if end and end >= start else None)

    date_field = params.get("date_field", "schedule")
    if date_field not in DATE_FIELDS:
        date_field = "schedule"

    filters = ProjectFilters(
        search=params.get("q", "") or "",
        date_range=date_range,
        date_field=date_field,
        owner_ids=_split(params.get("owner")),
        member_ids=_split(params.get("member")),
        excluded_statuses=_split(params.get("hide")),
        multi_person_only=str(params.get("multi", "")).lower() in ("1", "true", "yes"),
    )

    sort = SortConfig()
    if "sort" in params:
        sort.key = params["sort"] or None
    if params.get("dir") in ("desc", "descending"):
        sort.direction = "descending"

    view = params.get("view", "table")
    if view not in VIEWS:
        view = "table"

    return FilterState(filters=filters, sort=sort, view=view)


# --- Preference store ---


class PreferenceStore:
    """JSON-file key/value store with optional per-item expiry.

    Each entry is stored as ``{"value": ..., "timestamp": ms, "expires": ms}``.
    Expired or corrupted entries are dropped on read.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    # --- file access ---

    def _now_ms(self) -> int:
        return int(time.time() * 1000)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Preference store {self.path} unreadable, starting empty: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    @property
    def is_available(self) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self.path.parent, os.W_OK)

    def _make_item(self, value: Any, expires_in: Optional[int]) -> dict:
        now = self._now_ms()
        return {
            "value": value,
            "timestamp": now,
            "expires": now + expires_in if expires_in else None,
        }

    def _is_valid(self, item: Any) -> bool:
        return isinstance(item, dict) and "value" in item

    def _is_expired(self, item: dict, now: int) -> bool:
        expires = item.get("expires")
        return bool(expires) and now > expires

    # --- public API ---

    def set_item(self, key: str, value: Any, expires_in: Optional[int] = None) -> bool:
        """Store ``value`` under ``key``; ``expires_in`` is in milliseconds."""
        if not self.is_available:
            logger.warning("Preference store is not available")
            return False
        try:
            data = self._load()
            data[key] = self._make_item(value, expires_in)
            self._save(data)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to set preference {key!r}: {e}")

        # Free up space and retry once
        self.cleanup()
        try:
            data = self._load()
            data[key] = self._make_item(value, expires_in)
            self._save(data)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to set preference {key!r} after cleanup: {e}")
            return False

    def get_item(self, key: str, default: Any = None) -> Any:
        data = self._load()
        item = data.get(key)
        if item is None:
            return default
        if not self._is_valid(item) or self._is_expired(item, self._now_ms()):
            self.remove_item(key)
            return default
        return item["value"]

    def remove_item(self, key: str) -> bool:
        try:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)
            return True
        except OSError as e:
            logger.error(f"Failed to remove preference {key!r}: {e}")
            return False

    def clear(self) -> bool:
        try:
            self._save({})
            return True
        except OSError as e:
            logger.error(f"Failed to clear preference store: {e}")
            return False

    def cleanup(self) -> int:
        """Drop expired and corrupted entries. Returns the number removed."""
        data = self._load()
        now = self._now_ms()
        stale = [
            key for key, item in data.items()
            if not self._is_valid(item) or self._is_expired(item, now)
        ]
        if not stale:
            return 0
        for key in stale:
            del data[key]
        try:
            self._save(data)
        except OSError as e:
            logger.error(f"Error during preference cleanup: {e}")
            return 0
        return len(stale)

    def storage_info(self) -> dict[str, int]:
        data = self._load()
        used = sum(len(key) + len(json.dumps(item)) for key, item in data.items())
        return {
            "used": used,
            "available": STORAGE_QUOTA_BYTES - used,
            "total": STORAGE_QUOTA_BYTES,
            "items": len(data),
        }

    def export_data(self) -> dict[str, Any]:
        return self._load()

    def import_data(self, data: dict[str, Any]) -> bool:
        """Merge raw entries (as produced by ``export_data``) into the store."""
        try:
            current = self._load()
            current.update(data)
            self._save(current)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error importing preference data: {e}")
            return False


# --- Per-user view state ---


def _view_key(user_id: str) -> str:
    return f"projects:view:{user_id}"


def save_view_state(store: PreferenceStore, user_id: str, state: FilterState) -> bool:
    return store.set_item(_view_key(user_id), to_query_params(state))


def load_view_state(store: PreferenceStore, user_id: str) -> FilterState:
    params = store.get_item(_view_key(user_id), default={})
    if not isinstance(params, dict):
        return FilterState()
    return from_query_params(params)
