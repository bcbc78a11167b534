"""Engagement Aggregator: comment and reaction counts read from the cache.

Reaction state is computed at read time. Each author's most recent
reaction to a target supersedes the earlier ones; ``"+"`` counts as a
like, anything else (normally ``"-"``) as withdrawn.
"""
import logging
from typing import Dict, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from relay_sync.error_log import ErrorLog
from relay_sync.models import KIND_REACTION, KIND_TEXT_NOTE, REACTION_LIKE, Event
from relay_sync.storage import EventStoreFacade
from relay_sync.tags import EVENT_MARKER

logger = logging.getLogger("relay_sync.engagement")


class ReactionLedger(BaseModel):
    """Most recent reaction per author for one target event."""

    model_config = ConfigDict(frozen=True)

    target_id: str = Field(..., min_length=1)
    latest_by_author: Dict[str, Event] = Field(default_factory=dict)

    @property
    def like_count(self) -> int:
        return sum(1 for e in self.latest_by_author.values() if e.content == REACTION_LIKE)

    def has_liked(self, pubkey: str) -> bool:
        latest = self.latest_by_author.get(pubkey)
        return latest is not None and latest.content == REACTION_LIKE


def _supersedes(candidate: Event, current: Event) -> bool:
    # Equal timestamps resolve by id so the result ignores input order
    return (candidate.created_at, candidate.id) > (current.created_at, current.id)


def reduce_reactions(events: Iterable[Event], target_id: str) -> ReactionLedger:
    """Build the ledger for ``target_id`` from any mix of events.

    Events that are not reactions, or that do not reference the target,
    are ignored.
    """
    latest: Dict[str, Event] = {}
    for event in events:
        if event.kind != KIND_REACTION or not event.references(target_id):
            continue
        current = latest.get(event.pubkey)
        if current is None or _supersedes(event, current):
            latest[event.pubkey] = event
    return ReactionLedger(target_id=target_id, latest_by_author=latest)


class EngagementAggregator:
    """Read-only counts over whatever the cache currently holds.

    Cache failures degrade to zero/false; they are logged (and recorded in
    the error log when one is supplied) but never raised.
    """

    def __init__(self, store: EventStoreFacade, error_log: Optional[ErrorLog] = None) -> None:
        self._store = store
        self._error_log = error_log

    def _degraded(self, action: str, exc: Exception) -> None:
        if self._error_log is not None:
            self._error_log.record(action, exc, source="engagement")
        else:
            logger.warning("Cache read failed while trying to %s: %s", action, exc)

    async def comment_count(self, post_id: str) -> int:
        try:
            events = await self._store.query_cached_events(
                kind=KIND_TEXT_NOTE, tag_key=EVENT_MARKER, tag_value=post_id
            )
        except Exception as exc:
            self._degraded(f"count comments for {post_id}", exc)
            return 0
        return sum(1 for e in events if e.references(post_id))

    async def reaction_ledger(self, event_id: str) -> ReactionLedger:
        try:
            events = await self._store.query_cached_events(
                kind=KIND_REACTION, tag_key=EVENT_MARKER, tag_value=event_id
            )
        except Exception as exc:
            self._degraded(f"load reactions for {event_id}", exc)
            events = []
        return reduce_reactions(events, event_id)

    async def reaction_count(self, event_id: str) -> int:
        ledger = await self.reaction_ledger(event_id)
        return ledger.like_count

    async def has_user_reacted(self, event_id: str, self_key: str) -> bool:
        ledger = await self.reaction_ledger(event_id)
        return ledger.has_liked(self_key)
