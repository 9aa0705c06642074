"""Derived, non-persisted state computed from document snapshots. No I/O here."""

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Optional

from database import normalize_timestamp

WEEKDAY_LABELS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]

REQUEST_VIEWS = ("all", "available", "claimed", "pending", "resolved", "cancelled")


def _local(value, tz: Optional[tzinfo]) -> Optional[datetime]:
    ts = normalize_timestamp(value)
    if ts is None:
        return None
    return ts.astimezone(tz) if tz is not None else ts.astimezone()


def date_label(value, now: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> str:
    day = _local(value, tz)
    if day is None:
        # A message written a moment ago may not carry its timestamp yet
        return "Today"
    today = _local(now or datetime.now(timezone.utc), tz).date()
    if day.date() == today:
        return "Today"
    if day.date() == today - timedelta(days=1):
        return "Yesterday"
    return f"{day.month}/{day.day}/{day.year}"


def group_by_date(messages: Iterable[dict], now: Optional[datetime] = None,
                  tz: Optional[tzinfo] = None) -> Dict[str, List[dict]]:
    """Bucket time-ordered messages under "Today", "Yesterday" or a calendar date.

    Buckets appear in first-seen order and keep the input order inside.
    """
    groups: Dict[str, List[dict]] = {}
    for msg in messages:
        groups.setdefault(date_label(msg.get("timestamp"), now=now, tz=tz), []).append(msg)
    return groups


def unread_delta(
    old_messages: Optional[List[dict]],
    new_messages: List[dict],
    active_room_id: Optional[str],
    viewed_room_id: str,
    self_email: str,
) -> int:
    """How many messages in ``new_messages`` count as unread for ``viewed_room_id``.

    The first snapshot of a room is history, and the room on screen never
    accumulates unread messages.
    """
    if old_messages is None or viewed_room_id == active_room_id:
        return 0
    return len(arrivals(old_messages, new_messages, self_email))


def arrivals(old_messages: List[dict], new_messages: List[dict], self_email: str) -> List[dict]:
    """Messages in the new snapshot that were not in the old one and came from someone else."""
    seen = {m.get("id") for m in old_messages}
    return [
        m for m in new_messages
        if m.get("id") not in seen and m.get("sender_email") != self_email
    ]


def fold_unread(counts: Dict[str, int], room_id: str, delta: int) -> Dict[str, int]:
    if not delta:
        return counts
    updated = dict(counts)
    updated[room_id] = updated.get(room_id, 0) + delta
    return updated


def total_unread(counts: Dict[str, int]) -> int:
    return sum(c for c in counts.values() if c > 0)


def weekly_histogram(requests: Iterable[dict]) -> List[int]:
    """Requests per weekday of ``requested_at``, Monday first."""
    buckets = [0] * 7
    for r in requests:
        when = normalize_timestamp(r.get("requested_at"))
        if when is None:
            continue
        # requested_at is stored as the requester's wall-clock time, so no tz shift
        buckets[when.weekday()] += 1
    return buckets


def request_status(request: dict) -> str:
    return request.get("status") or "pending"


def compute_stats(requests: Iterable[dict]) -> dict:
    requests = list(requests)
    stats = {"total": len(requests), "pending": 0, "resolved": 0, "cancelled": 0}
    for r in requests:
        status = request_status(r)
        if status in stats:
            stats[status] += 1
    stats["weekly"] = weekly_histogram(requests)
    stats["labels"] = list(WEEKDAY_LABELS)
    return stats


def filter_requests(requests: Iterable[dict], view: str = "all", search: str = "") -> List[dict]:
    needle = (search or "").strip().lower()
    out = []
    for r in requests:
        status = request_status(r)
        if view == "available" and (r.get("volunteer_email") or status != "pending"):
            continue
        if view == "claimed" and (not r.get("volunteer_email") or status != "pending"):
            continue
        if view in ("pending", "resolved", "cancelled") and status != view:
            continue
        if needle and needle not in (r.get("title") or "").lower() \
                and needle not in (r.get("description") or "").lower():
            continue
        out.append(r)
    return out
