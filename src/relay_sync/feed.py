"""Feed Synchronizer: the global feed of top-level posts.

The view is fed by three sources (cache hydration, relay pages and the
live subscription) and every mutation goes through :meth:`_merge`, which
keeps it unique by id, sorted newest first, and keeps the pagination
cursor in step with its last element.
"""
import logging
from typing import Iterable, List, Optional

from relay_sync.config import Settings
from relay_sync.error_log import ErrorLog
from relay_sync.models import KIND_TEXT_NOTE, Event
from relay_sync.notifications import CommentUpdate
from relay_sync.ordering import merge_sort_dedupe, newest_created_at, oldest_created_at
from relay_sync.storage import EventStoreFacade
from relay_sync.synchronizer import BaseSynchronizer, SyncPhase

logger = logging.getLogger("relay_sync.feed")


class FeedSynchronizer(BaseSynchronizer):
    """Owns the ordered feed view, its cursor and its hashtag projection."""

    source = "feed"

    def __init__(
        self,
        store: EventStoreFacade,
        *,
        settings: Optional[Settings] = None,
        error_log: Optional[ErrorLog] = None,
        owns_store: bool = True,
    ) -> None:
        super().__init__(store, settings=settings, error_log=error_log, owns_store=owns_store)
        self._reset_state()

    def _reset_state(self) -> None:
        self._view: List[Event] = []
        self._cursor: Optional[int] = None
        self._exhausted = False
        self._hashtag_filter: Optional[str] = None
        self._clear_loading()
        self._phase = SyncPhase.UNINITIALIZED

    def _clear_loading(self) -> None:
        self._is_loading = False
        self._is_loading_more = False
        self._is_refreshing = False

    # ── Read side ────────────────────────────────────────────────────────────

    @property
    def all_events(self) -> List[Event]:
        """The whole feed view, ignoring the hashtag filter."""
        return list(self._view)

    @property
    def events(self) -> List[Event]:
        """The feed view narrowed by the hashtag filter, if one is set."""
        if self._hashtag_filter is None:
            return list(self._view)
        return [e for e in self._view if e.matches_hashtag(self._hashtag_filter)]

    @property
    def hashtag_filter(self) -> Optional[str]:
        return self._hashtag_filter

    @property
    def oldest_event_time(self) -> Optional[int]:
        """The pagination cursor; None when the view is empty or history is exhausted."""
        return self._cursor

    @property
    def has_more_events(self) -> bool:
        return self._cursor is not None

    @property
    def is_exhausted(self) -> bool:
        return self._exhausted

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def is_loading_more(self) -> bool:
        return self._is_loading_more

    @property
    def is_refreshing(self) -> bool:
        return self._is_refreshing

    def set_hashtag_filter(self, tag: Optional[str]) -> None:
        """Project the view onto ``tag``; the underlying view is untouched."""
        normalized = tag.lstrip("#").strip().lower() if tag else ""
        self._hashtag_filter = normalized or None
        self._notify_changed()

    def clear_filter(self) -> None:
        self.set_hashtag_filter(None)

    # ── Merge ────────────────────────────────────────────────────────────────

    def _merge(self, incoming: Iterable[Event]) -> int:
        """Merge top-level events into the view; returns how many were new.

        Must be called with ``self._lock`` held.
        """
        before = len(self._view)
        top_level = [e for e in incoming if e.is_top_level]
        self._view = merge_sort_dedupe([*self._view, *top_level], newest_first=True)
        self._cursor = None if self._exhausted else oldest_created_at(self._view)
        return len(self._view) - before

    # ── Initialization sequence ──────────────────────────────────────────────

    async def start(self) -> None:
        """Hydrate from cache, connect, sync, then follow the live stream.

        Failures are recorded in ``error_message``; nothing is raised.
        """
        self._begin()
        generation = self._generation
        await self.hydrate()
        if not self._is_current(generation) or not self._check_config():
            return
        await self.connect()

    async def hydrate(self) -> None:
        generation = self._generation
        self._phase = SyncPhase.HYDRATING
        try:
            cached = await self._store.query_cached_events(
                kind=KIND_TEXT_NOTE, limit=self.settings.page_size
            )
        except Exception as exc:
            logger.warning("Feed hydration from cache failed: %s", exc)
            cached = []
        if not self._is_current(generation):
            return
        async with self._lock:
            added = self._merge(cached)
        logger.debug("Hydrated %d cached posts", added)
        self._notify_changed()

    async def connect(self) -> bool:
        """Open the relay connection; on success subscribe and run the initial sync.

        A second call while the live subscription is open does nothing more.
        """
        if self._subscriptions and self.is_connected:
            return True
        generation = self._generation
        if not await self._connect() or not self._is_current(generation):
            return False
        self._cancel_subscriptions()
        self._listen(KIND_TEXT_NOTE, self.live_merge)
        await self.initial_sync()
        return True

    async def initial_sync(self) -> None:
        """Fetch posts newer than the current newest entry. Only ever adds."""
        generation = self._generation
        since = newest_created_at(self._view)
        self._is_loading = True
        self._notify_changed()
        try:
            events = await self._request(
                kind=KIND_TEXT_NOTE,
                since=since,
                limit=self.settings.page_size,
                use_cache=True,
            )
        except Exception as exc:
            if self._is_current(generation):
                self._is_loading = False
                self._report("load initial events", exc)
            return
        if not self._is_current(generation):
            logger.debug("Dropping initial sync result for a released feed")
            return
        async with self._lock:
            added = self._merge(events)
            self._is_loading = False
        logger.info("Initial sync added %d posts", added)
        self._notify_changed()

    # ── Pagination and refresh ───────────────────────────────────────────────

    async def load_more(self) -> bool:
        """Fetch the next page of older posts.

        Returns False without doing anything when a page is already in
        flight, the cursor is absent, or the relay is not connected. A page
        that adds no new post exhausts the cursor. Fetch failures are
        recorded and re-raised; the view is left as it was. A page that
        arrives after the feed was released is dropped and False returned.
        """
        generation = self._generation
        cursor = self._cursor
        if self._is_loading_more or cursor is None or not self.is_connected:
            return False
        self._is_loading_more = True
        self._notify_changed()
        try:
            events = await self._request(
                kind=KIND_TEXT_NOTE,
                until=cursor - 1,
                limit=self.settings.page_size,
                use_cache=False,
            )
        except Exception as exc:
            if not self._is_current(generation):
                return False
            self._is_loading_more = False
            self._report("load more events", exc)
            raise
        if not self._is_current(generation):
            logger.debug("Dropping page until=%d for a released feed", cursor - 1)
            return False
        async with self._lock:
            added = self._merge(events)
            if added == 0:
                self._exhausted = True
                self._cursor = None
            self._is_loading_more = False
        logger.debug("Loaded %d older posts (until=%d)", added, cursor - 1)
        self._notify_changed()
        return True

    async def refresh(self) -> bool:
        """Pull posts newer than the newest entry; additions only."""
        generation = self._generation
        if self._is_refreshing or not self.is_connected:
            return False
        self._is_refreshing = True
        self._notify_changed()
        try:
            events = await self._request(
                kind=KIND_TEXT_NOTE,
                since=newest_created_at(self._view),
                limit=self.settings.page_size,
                use_cache=False,
            )
        except Exception as exc:
            if not self._is_current(generation):
                return False
            self._is_refreshing = False
            self._report("refresh feed", exc)
            raise
        if not self._is_current(generation):
            return False
        async with self._lock:
            added = self._merge(events)
            self._is_refreshing = False
        logger.debug("Refresh added %d posts", added)
        self._notify_changed()
        return True

    # ── Live stream ──────────────────────────────────────────────────────────

    async def live_merge(self, event: Event) -> None:
        """Handle one event from the live subscription.

        Comments are cached and announced on the comment channel but never
        enter the feed; new top-level posts are merged.
        """
        if not self._active or event.kind != KIND_TEXT_NOTE:
            return
        post_id = event.first_event_ref
        if post_id is not None:
            await self._write_cached(event)
            self._emit_comment(CommentUpdate(post_id=post_id, comment_id=event.id))
            return
        if not event.is_top_level:
            return
        async with self._lock:
            if any(e.id == event.id for e in self._view):
                return
            self._merge([event])
        logger.debug("Live post %s merged", event.id)
        self._notify_changed()
