"""Project list filtering and sorting.

Filters are plain predicates over a project row and are combined with a
logical AND. Sorting is type aware (numbers, dates, localized text), keeps
missing values at the end regardless of direction and falls back to the
creation timestamp so equal keys come out in a stable order.

Works on ``ProjectSummary`` models as well as plain dicts.
"""

import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from functools import cmp_to_key
from typing import Any, Iterable, Literal, Optional

Direction = Literal["ascending", "descending"]
DateField = Literal["schedule", "payment_due_date"]

SEARCH_FIELDS = ("name", "description", "category", "client_name")


@dataclass
class DateRange:
    start: date
    end: Optional[date] = None  # None -> single day

    @property
    def effective_end(self) -> date:
        return self.end or self.start


@dataclass
class ProjectFilters:
    search: str = ""
    date_range: Optional[DateRange] = None
    date_field: DateField = "schedule"
    owner_ids: list[str] = field(default_factory=list)
    member_ids: list[str] = field(default_factory=list)
    excluded_statuses: list[str] = field(default_factory=list)
    multi_person_only: bool = False

    @property
    def active_count(self) -> int:
        """Number of advanced filters in effect (shown as a badge)."""
        return (
            len(self.owner_ids)
            + len(self.member_ids)
            + len(self.excluded_statuses)
            + (1 if self.multi_person_only else 0)
        )


@dataclass
class SortConfig:
    key: Optional[str] = "start_date"
    direction: Direction = "ascending"


# --- Field access ---


def get_field(item: Any, key: str) -> Any:
    """Read a (dotted) field from a model or dict."""
    value = item
    for part in key.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def _as_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        parsed = _parse_iso(value)
        return parsed.date() if parsed else None
    return None


def _parse_iso(value: str) -> Optional[datetime]:
    text = value.strip()
    if len(text) < 10 or not text[:4].isdigit() or text[4] != "-":
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return _naive_utc(parsed)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _user_ids(value: Any) -> list[str]:
    ids = []
    for user in value or []:
        user_id = get_field(user, "id")
        if user_id is not None:
            ids.append(str(user_id))
    return ids


# --- Predicates ---


def matches_search(project: Any, term: str) -> bool:
    needle = (term or "").strip().casefold()
    if not needle:
        return True
    for name in SEARCH_FIELDS:
        value = get_field(project, name)
        if value and needle in str(value).casefold():
            return True
    return False


def matches_date_range(
    project: Any, date_range: Optional[DateRange], date_field: DateField = "schedule"
) -> bool:
    """Overlap test between the project's span and the selected range."""
    if date_range is None:
        return True

    if date_field == "payment_due_date":
        start = _as_date(get_field(project, "payment_due_date"))
        end = start
    else:
        start = _as_date(get_field(project, "start_date"))
        end = _as_date(get_field(project, "due_date")) or start

    if start is None:
        return False
    if end is None or end < start:
        end = start

    return start <= date_range.effective_end and end >= date_range.start


def matches_owner(project: Any, owner_ids: Iterable[str]) -> bool:
    wanted = set(owner_ids)
    if not wanted:
        return True
    owner = get_field(project, "created_by")
    owner_id = owner if isinstance(owner, str) else get_field(owner, "id")
    return owner_id in wanted


def matches_members(project: Any, member_ids: Iterable[str]) -> bool:
    wanted = set(member_ids)
    if not wanted:
        return True
    return any(uid in wanted for uid in _user_ids(get_field(project, "assigned_to")))


def matches_status(project: Any, excluded_statuses: Iterable[str]) -> bool:
    return get_field(project, "status") not in set(excluded_statuses)


def matches_multi_person(project: Any, multi_person_only: bool) -> bool:
    if not multi_person_only:
        return True
    return len(_user_ids(get_field(project, "assigned_to"))) > 1


def filter_projects(projects: Iterable[Any], filters: ProjectFilters) -> list[Any]:
    """Apply every filter; input order is preserved."""
    return [
        p for p in projects
        if matches_search(p, filters.search)
        and matches_date_range(p, filters.date_range, filters.date_field)
        and matches_owner(p, filters.owner_ids)
        and matches_members(p, filters.member_ids)
        and matches_status(p, filters.excluded_statuses)
        and matches_multi_person(p, filters.multi_person_only)
    ]


# --- Sorting ---


def _collate(text: str) -> str:
    """Accent- and case-insensitive collation key."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return stripped.casefold()


def _sort_key(value: Any) -> tuple[int, Any]:
    """(kind, comparable) so values of one kind compare naturally."""
    if isinstance(value, bool):
        return 0, int(value)
    if isinstance(value, (int, float)):
        return 0, value
    if isinstance(value, datetime):
        return 1, _naive_utc(value)
    if isinstance(value, date):
        return 1, datetime.combine(value, time.min)
    if isinstance(value, str):
        parsed = _parse_iso(value)
        if parsed is not None:
            return 1, parsed
        return 2, _collate(value)
    # Embedded users sort by display name
    name = get_field(value, "name")
    if isinstance(name, str):
        return 2, _collate(name)
    return 2, _collate(str(value))


def _is_missing(value: Any) -> bool:
    return value is None or value == "" or value == []


def compare_values(a: Any, b: Any) -> int:
    ka, kb = _sort_key(a), _sort_key(b)
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


def _compare_created(a: Any, b: Any) -> int:
    ca, cb = get_field(a, "created_at"), get_field(b, "created_at")
    if _is_missing(ca) or _is_missing(cb):
        return (1 if _is_missing(ca) else 0) - (1 if _is_missing(cb) else 0)
    return compare_values(ca, cb)


def sort_projects(projects: Iterable[Any], sort: SortConfig) -> list[Any]:
    items = list(projects)
    if not sort.key:
        return items

    key = sort.key
    sign = -1 if sort.direction == "descending" else 1

    def _cmp(a: Any, b: Any) -> int:
        av, bv = get_field(a, key), get_field(b, key)
        a_missing, b_missing = _is_missing(av), _is_missing(bv)
        if a_missing or b_missing:
            if a_missing and b_missing:
                return _compare_created(a, b)
            # missing values sink regardless of direction
            return 1 if a_missing else -1
        result = compare_values(av, bv) * sign
        return result or _compare_created(a, b)

    return sorted(items, key=cmp_to_key(_cmp))


def request_sort(current: SortConfig, key: str) -> SortConfig:
    """Clicking the active ascending column flips it; anything else sorts ascending."""
    if current.key == key and current.direction == "ascending":
        return SortConfig(key=key, direction="descending")
    return SortConfig(key=key, direction="ascending")


def apply_filters(
    projects: Iterable[Any],
    filters: ProjectFilters,
    sort: Optional[SortConfig] = None,
) -> list[Any]:
    filtered = filter_projects(projects, filters)
    return sort_projects(filtered, sort or SortConfig())
