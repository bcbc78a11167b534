"""Merge-sort-dedupe over event lists and the pagination cursor it yields."""
from typing import Iterable, List, Optional, Sequence, Set

from relay_sync.models import Event


def dedup_events(events: Iterable[Event]) -> List[Event]:
    """Keep the first event seen for each id, preserving input order."""
    seen: Set[str] = set()
    unique: List[Event] = []
    for event in events:
        if event.id in seen:
            continue
        seen.add(event.id)
        unique.append(event)
    return unique


def merge_sort_dedupe(
    events: Iterable[Event],
    *,
    newest_first: bool = True,
) -> List[Event]:
    """Deduplicate by id (first seen wins) and stable-sort by ``created_at``.

    Feed views use ``newest_first=True``; thread comment lists use
    ``newest_first=False``. Events with equal timestamps keep their
    relative input order in both directions.
    """
    unique = dedup_events(events)
    # sorted() with reverse=True is still stable for equal keys
    return sorted(unique, key=lambda e: e.created_at, reverse=newest_first)


def oldest_created_at(view: Sequence[Event]) -> Optional[int]:
    """``created_at`` of the last element of a newest-first view, or None."""
    if not view:
        return None
    return view[-1].created_at


def newest_created_at(view: Sequence[Event]) -> Optional[int]:
    """``created_at`` of the first element of a newest-first view, or None."""
    if not view:
        return None
    return view[0].created_at
