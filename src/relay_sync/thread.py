"""Thread Synchronizer: one root post and its flat comment list.

Comments are kind-1 events whose first ``e`` tag names the root. They are
kept oldest first. Relay results are re-checked client-side because the
tag query may match an ``e`` value in any position.
"""
import logging
from typing import Iterable, List, Optional, Set

from relay_sync.config import Settings
from relay_sync.error_log import ErrorLog
from relay_sync.models import (
    KIND_REACTION,
    KIND_TEXT_NOTE,
    Event,
    NotFoundError,
    RelaySyncError,
)
from relay_sync.notifications import CommentUpdate, ReactionUpdate
from relay_sync.ordering import merge_sort_dedupe
from relay_sync.storage import EventStoreFacade
from relay_sync.synchronizer import BaseSynchronizer, SyncPhase
from relay_sync.tags import EVENT_MARKER

logger = logging.getLogger("relay_sync.thread")


class ThreadSynchronizer(BaseSynchronizer):
    """Owns the thread view for ``root_id``."""

    def __init__(
        self,
        store: EventStoreFacade,
        root_id: str,
        *,
        settings: Optional[Settings] = None,
        error_log: Optional[ErrorLog] = None,
        owns_store: bool = True,
    ) -> None:
        if not root_id:
            raise ValueError("root_id must be non-empty")
        self.root_id = root_id
        self.source = f"thread:{root_id[:8]}"
        super().__init__(store, settings=settings, error_log=error_log, owns_store=owns_store)
        self._reset_state()

    def _reset_state(self) -> None:
        self._root: Optional[Event] = None
        self._comments: List[Event] = []
        self._is_loading = False
        self._not_found = False
        self._phase = SyncPhase.UNINITIALIZED

    def _clear_loading(self) -> None:
        self._is_loading = False

    @property
    def root(self) -> Optional[Event]:
        return self._root

    @property
    def comments(self) -> List[Event]:
        return list(self._comments)

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def not_found(self) -> bool:
        return self._not_found

    def known_ids(self) -> Set[str]:
        """The root id plus every comment id in the view."""
        ids = {e.id for e in self._comments}
        ids.add(self.root_id)
        return ids

    def _merge(self, incoming: Iterable[Event]) -> int:
        """Merge comments on the root; must be called with the lock held."""
        before = len(self._comments)
        matching = [e for e in incoming if e.is_comment_on(self.root_id)]
        self._comments = merge_sort_dedupe([*self._comments, *matching], newest_first=False)
        return len(self._comments) - before

    # ── Initialization sequence ──────────────────────────────────────────────

    async def start(self) -> None:
        """Hydrate from cache, connect, resolve the root and fetch its comments."""
        self._begin()
        generation = self._generation
        await self.hydrate()
        if not self._is_current(generation) or not self._check_config():
            return
        if not await self._connect():
            return
        self._listen(KIND_TEXT_NOTE, self.live_merge_comment)
        self._listen(KIND_REACTION, self.live_merge_reaction)
        if self._root is None:
            try:
                await self.resolve_root()
            except Exception as exc:
                if self._is_current(generation):
                    self._report("load post", exc)
                return
        await self.load_comments()

    async def hydrate(self) -> None:
        generation = self._generation
        self._phase = SyncPhase.HYDRATING
        root = await self._read_cached(self.root_id)
        try:
            cached = await self._store.query_cached_events(
                kind=KIND_TEXT_NOTE, tag_key=EVENT_MARKER, tag_value=self.root_id
            )
        except Exception as exc:
            logger.warning("Thread hydration from cache failed: %s", exc)
            cached = []
        if not self._is_current(generation):
            return
        async with self._lock:
            if root is not None:
                self._root = root
            self._merge(cached)
        self._notify_changed()

    async def resolve_root(self) -> Event:
        """Find the root in the cache, else scan the relay (narrow, then wide).

        Raises :class:`NotFoundError` when neither scan contains it, and
        :class:`RelaySyncError` when the thread is released mid-scan.
        """
        generation = self._generation
        cached = await self._read_cached(self.root_id)
        if cached is not None:
            if self._is_current(generation):
                self._root = cached
            return cached
        for limit in self.settings.post_scan_limits:
            events = await self._request(kind=KIND_TEXT_NOTE, limit=limit, use_cache=False)
            if not self._is_current(generation):
                raise RelaySyncError(f"{self.source} was released while resolving its root")
            match = next((e for e in events if e.id == self.root_id), None)
            if match is not None:
                await self._write_cached(match)
                self._root = match
                self._not_found = False
                self._notify_changed()
                return match
            logger.debug("Root %s not in latest %d posts", self.root_id, limit)
        self._not_found = True
        raise NotFoundError(self.root_id)

    async def _fetch_comments(self, *, use_cache: bool) -> Optional[int]:
        """Fetch and merge comments; None when the thread was released meanwhile."""
        generation = self._generation
        self._is_loading = True
        self._notify_changed()
        try:
            events = await self._request(
                kind=KIND_TEXT_NOTE,
                tags=[self.root_id],
                tag_key=EVENT_MARKER,
                limit=self.settings.comment_limit,
                use_cache=use_cache,
            )
        except Exception:
            if not self._is_current(generation):
                return None
            self._is_loading = False
            raise
        if not self._is_current(generation):
            logger.debug("Dropping comments for released thread %s", self.root_id)
            return None
        async with self._lock:
            added = self._merge(events)
            self._is_loading = False
        self._notify_changed()
        return added

    async def load_comments(self) -> None:
        """Fetch the comment set, cache-first. Failures are recorded, not raised."""
        try:
            added = await self._fetch_comments(use_cache=True)
        except Exception as exc:
            self._report("load comments", exc)
            return
        if added is not None:
            logger.info("Loaded %d comments for %s", added, self.root_id)

    async def refresh_comments(self) -> int:
        """Re-fetch comments from the relay, keeping those already received live.

        Returns how many comments were added; 0 when the thread was released
        before the relay answered.
        """
        try:
            added = await self._fetch_comments(use_cache=False)
        except Exception as exc:
            self._report("refresh comments", exc)
            raise
        return added or 0

    # ── Live stream ──────────────────────────────────────────────────────────

    async def live_merge_comment(self, event: Event) -> None:
        if not self._active or not event.is_comment_on(self.root_id):
            return
        async with self._lock:
            if any(e.id == event.id for e in self._comments):
                return
            self._merge([event])
        await self._write_cached(event)
        logger.debug("Live comment %s merged into %s", event.id, self.root_id)
        self._emit_comment(CommentUpdate(post_id=self.root_id, comment_id=event.id))
        self._notify_changed()

    async def live_merge_reaction(self, event: Event) -> None:
        """Cache and announce reactions to the root or one of its comments."""
        if not self._active or event.kind != KIND_REACTION:
            return
        target = event.first_event_ref
        if target is None or target not in self.known_ids():
            return
        await self._write_cached(event)
        self._emit_reaction(
            ReactionUpdate(target_id=target, pubkey=event.pubkey, content=event.content)
        )

    # ── Lookup ───────────────────────────────────────────────────────────────

    async def get_event(self, event_id: str) -> Optional[Event]:
        """Look an event up in the cache, the thread, then a bounded relay scan."""
        cached = await self._read_cached(event_id)
        if cached is not None:
            return cached
        if self._root is not None and self._root.id == event_id:
            return self._root
        for comment in self._comments:
            if comment.id == event_id:
                return comment
        if not self.is_connected:
            return None
        try:
            events = await self._request(
                kind=KIND_TEXT_NOTE, limit=self.settings.comment_limit, use_cache=False
            )
        except Exception as exc:
            logger.warning("Relay lookup for %s failed: %s", event_id, exc)
            return None
        return next((e for e in events if e.id == event_id), None)
