"""Pure work-item helpers.

Field mapping, state bucketing, batching, name resolution and pagination used
by the worker's adapter and by the HTTP facade. Nothing in here does I/O.
"""

import math
import re
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

# Azure DevOps rejects workitems?ids= lists longer than this
WORK_ITEM_BATCH_LIMIT = 200

DEFAULT_PRIORITY = 3

URGENCY_PRIORITY = {
    "Critical": 1,
    "High": 2,
    "Medium": 3,
    "Low": 4,
}

URGENCY_LEVELS = tuple(URGENCY_PRIORITY)

# Bucket names, in dashboard order
NEW = "New"
COMMITTED = "Committed"
ACTIVE = "Active"
IN_REVIEW = "In Review"
CLOSED = "Closed"

STATE_BUCKETS: dict[str, tuple[str, ...]] = {
    NEW: ("new",),
    COMMITTED: ("committed",),
    ACTIVE: ("active", "in progress"),
    IN_REVIEW: ("resolved", "in review", "under review"),
    CLOSED: ("completed", "done", "closed"),
}

OPEN_BUCKETS = (NEW, COMMITTED, ACTIVE, IN_REVIEW)

# Status filter keys accepted by the dashboard endpoint
STATUS_FILTERS = {
    "new": NEW,
    "committed": COMMITTED,
    "active": ACTIVE,
    "in_review": IN_REVIEW,
    "closed": CLOSED,
}

# States requested when the dashboard asks for everything
ALL_STATES = [
    "New",
    "Active",
    "Committed",
    "In Progress",
    "In Review",
    "Resolved",
    "Done",
    "Closed",
]

DEFAULT_INCLUDE_STATES = ["New", "Active", "Resolved"]


def urgency_to_priority(urgency: str | None) -> int:
    """Map request urgency to an Azure DevOps priority (1 = highest)."""
    if urgency is None:
        return DEFAULT_PRIORITY
    return URGENCY_PRIORITY.get(urgency, DEFAULT_PRIORITY)


def state_bucket(state: str | None) -> str | None:
    """Return the dashboard bucket for a work item state.

    Unmapped states (and missing ones) belong to no bucket.
    """
    if not state:
        return None
    normalized = state.strip().lower()
    for bucket, states in STATE_BUCKETS.items():
        if normalized in states:
            return bucket
    return None


def bucket_counts(items: Iterable[dict[str, Any]]) -> dict[str, int]:
    """Count work items per bucket.

    Returns:
        Dict with total, new, committed, active, inReview, closed
    """
    counts = {bucket: 0 for bucket in STATE_BUCKETS}
    total = 0
    for item in items:
        total += 1
        bucket = state_bucket(item.get("state"))
        if bucket:
            counts[bucket] += 1
    return {
        "total": total,
        "new": counts[NEW],
        "committed": counts[COMMITTED],
        "active": counts[ACTIVE],
        "inReview": counts[IN_REVIEW],
        "closed": counts[CLOSED],
    }


def filter_by_status(items: Sequence[dict[str, Any]], status: str | None) -> list[dict[str, Any]]:
    """Keep only items whose bucket matches a status filter key.

    ``None``, ``"all"`` and unrecognised keys keep everything.
    """
    bucket = STATUS_FILTERS.get((status or "all").lower())
    if bucket is None:
        return list(items)
    return [item for item in items if state_bucket(item.get("state")) == bucket]


def chunk_ids(ids: Iterable[int], size: int = WORK_ITEM_BATCH_LIMIT) -> Iterator[list[int]]:
    """Yield de-duplicated ids in batches of at most ``size``, order preserved."""
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")
    seen: set[int] = set()
    batch: list[int] = []
    for work_item_id in ids:
        if work_item_id in seen:
            continue
        seen.add(work_item_id)
        batch.append(work_item_id)
        if len(batch) == size:
            yield batch
            batch = []
    if batch:
        yield batch


def priority_summary(items: Iterable[dict[str, Any]]) -> dict[str, int]:
    summary = {f"Priority {level}": 0 for level in range(1, 5)}
    for item in items:
        key = f"Priority {item.get('priority')}"
        if key in summary:
            summary[key] += 1
    return summary


def state_summary(items: Sequence[dict[str, Any]], states: Iterable[str]) -> dict[str, int]:
    return {state: sum(1 for item in items if item.get("state") == state) for state in states}


# -----------------------------------------------------------------------------
# Name resolution
# -----------------------------------------------------------------------------

_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")
_NAME_SEPARATORS = re.compile(r"[._\-]+")


def display_name_from_email(email: str) -> str | None:
    """Guess a human display name from an email local part.

    ``jane.doe@x`` / ``jane_doe@x`` -> ``Jane Doe``; ``janeDoe@x`` -> ``Jane Doe``;
    ``janedoe@x`` -> ``Janedoe``. Returns None when there is no local part.
    """
    if "@" not in email:
        return None
    local_part = email.split("@", 1)[0].strip()
    if not local_part:
        return None

    if _NAME_SEPARATORS.search(local_part):
        parts = [part for part in _NAME_SEPARATORS.split(local_part) if part]
        return " ".join(part[:1].upper() + part[1:].lower() for part in parts)

    spaced = _CAMEL_BOUNDARY.sub(r"\1 \2", local_part)
    return " ".join(word[:1].upper() + word[1:] for word in spaced.split())


def candidate_identities(email: str) -> list[str]:
    """Ordered identity strings to try when looking up a user's work items.

    Azure DevOps matches ``System.AssignedTo`` against either the account
    address or the display name, so both are tried.
    """
    candidates = [email]
    display_name = display_name_from_email(email)
    if display_name and display_name not in candidates:
        candidates.append(display_name)
    return candidates


def work_item_key(item: dict[str, Any]) -> Any:
    return item.get("id", item.get("workItemId"))


def merge_work_items(result_sets: Iterable[Iterable[dict[str, Any]]]) -> list[dict[str, Any]]:
    """Union result sets by work item id; first occurrence wins, order kept."""
    merged: list[dict[str, Any]] = []
    seen: set[Any] = set()
    for result_set in result_sets:
        for item in result_set:
            key = work_item_key(item)
            if key is None or key in seen:
                continue
            seen.add(key)
            merged.append(item)
    return merged


def live_result_sets(
    results: Sequence[tuple[list[dict[str, Any]], bool]],
) -> tuple[list[list[dict[str, Any]]], bool]:
    """Choose which (items, is_fallback) result sets to merge.

    Fallback sets are only used when no identity returned live data, so sample
    records never appear next to real ones.

    Returns:
        The result sets to merge and whether they are fallback data
    """
    live = [items for items, is_fallback in results if not is_fallback]
    if live:
        return live, False
    return [items for items, _ in results], bool(results)


# -----------------------------------------------------------------------------
# Pagination and data quality
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Page:
    items: list[dict[str, Any]]
    current_page: int
    page_size: int
    total_items: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_items / self.page_size) if self.total_items else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "currentPage": self.current_page,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
            "totalItems": self.total_items,
            "hasNextPage": self.current_page < self.total_pages,
            "hasPreviousPage": self.current_page > 1,
        }


def paginate(items: Sequence[dict[str, Any]], page: int, page_size: int) -> Page:
    """Slice one page out of ``items``; page numbers start at 1."""
    page = max(page, 1)
    page_size = max(page_size, 1)
    start = (page - 1) * page_size
    return Page(
        items=list(items[start : start + page_size]),
        current_page=page,
        page_size=page_size,
        total_items=len(items),
    )


@dataclass(frozen=True)
class DataQualityPolicy:
    """Thresholds for flagging a suspiciously thin work item list.

    A list with at most ``max_items`` entries and nothing in an open bucket
    usually means a permissions or assignment problem rather than an idle user.
    """

    max_items: int = 2
    require_open: bool = True


def assess_data_quality(
    items: Sequence[dict[str, Any]], policy: DataQualityPolicy = DataQualityPolicy()
) -> str:
    """Return ``"empty"``, ``"limited"`` or ``"ok"`` for a work item list."""
    if not items:
        return "empty"
    if len(items) <= policy.max_items and policy.require_open:
        if not any(state_bucket(item.get("state")) in OPEN_BUCKETS for item in items):
            return "limited"
    return "ok"
