"""Lifecycle shared by the feed and thread synchronizers.

A synchronizer is an owned resource: ``start()`` runs the initialization
sequence, ``stop()`` cancels its live subscriptions and releases the
connection, ``shutdown()`` additionally discards in-memory state and
silences all notifications, and ``reinitialize()`` restores a clean start
after either.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from relay_sync.config import Settings, get_settings
from relay_sync.connection import ConnectionState, ConnectionStateMachine
from relay_sync.error_log import ErrorLog
from relay_sync.models import (
    ConfigurationError,
    Event,
    RelayConnectionError,
    RelaySyncError,
)
from relay_sync.notifications import CommentUpdate, Notifier, ReactionUpdate
from relay_sync.storage import EventStoreFacade, InMemoryErrorStorage, LiveSubscription

logger = logging.getLogger("relay_sync.synchronizer")


class SyncPhase(str, Enum):
    UNINITIALIZED = "uninitialized"
    HYDRATING = "hydrating"
    CONNECTING = "connecting"
    LIVE = "live"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    SHUTDOWN = "shutdown"


class BaseSynchronizer:
    """Owned-resource handle around one view fed by cache, relay and live stream.

    Subclasses implement :meth:`start` and :meth:`_reset_state`. All view
    mutations happen under ``self._lock``.
    """

    source = "sync"

    def __init__(
        self,
        store: EventStoreFacade,
        *,
        settings: Optional[Settings] = None,
        error_log: Optional[ErrorLog] = None,
        owns_store: bool = True,
    ) -> None:
        self._store = store
        self.settings = settings if settings is not None else get_settings()
        self.error_log = (
            error_log
            if error_log is not None
            else ErrorLog(InMemoryErrorStorage(self.settings.error_retention))
        )
        self.notifier = Notifier()
        self.connection = ConnectionStateMachine(self.source)
        self.connection.subscribe(self._on_connection_change)
        self._owns_store = owns_store
        self._lock = asyncio.Lock()
        self._subscriptions: List[LiveSubscription] = []
        self._tasks: List["asyncio.Task[None]"] = []
        self._active = False
        self._shut_down = False
        self._generation = 0
        self._phase = SyncPhase.UNINITIALIZED
        self._error_message: Optional[str] = None
        self._last_error: Optional[BaseException] = None

    # State

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def is_connected(self) -> bool:
        return self.connection.is_live

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def error_message(self) -> Optional[str]:
        return self._error_message

    def clear_error(self) -> None:
        self._error_message = None
        self._last_error = None

    def _reset_state(self) -> None:
        raise NotImplementedError

    def _clear_loading(self) -> None:
        """Drop the in-flight flags of requests abandoned by a release."""

    def _is_current(self, generation: int) -> bool:
        """False once the view has been released since ``generation`` was taken.

        Results of relay requests that return after ``stop()``, ``shutdown()``
        or ``reinitialize()`` belong to the old view and must be dropped.
        """
        return generation == self._generation

    async def start(self) -> None:
        raise NotImplementedError

    # Reporting and notification

    def _report(self, action: str, exc: BaseException) -> None:
        """Record ``exc`` in the error log and the reported-error field."""
        self._error_message = str(exc) or type(exc).__name__
        self._last_error = exc
        self.error_log.record(action, exc, source=self.source)
        self._notify_changed()

    def _notify_changed(self) -> None:
        if self._active:
            self.notifier.notify_changed()

    def _emit_comment(self, update: CommentUpdate) -> None:
        if self._active:
            self.notifier.notify_comment(update)

    def _emit_reaction(self, update: ReactionUpdate) -> None:
        if self._active:
            self.notifier.notify_reaction(update)

    # Initialization steps

    def _begin(self) -> None:
        if self._shut_down:
            raise RelaySyncError(f"{self.source} was shut down; call reinitialize()")
        self._active = True

    def _check_config(self) -> bool:
        """Verify the relay endpoint; on failure halt in the error phase."""
        try:
            self.settings.require_relay_url()
        except ConfigurationError as exc:
            self._phase = SyncPhase.ERROR
            self._report("read relay configuration", exc)
            return False
        return True

    async def _connect(self) -> bool:
        self._phase = SyncPhase.CONNECTING
        self._notify_changed()
        generation = self._generation
        try:
            await self.connection.connect(self._store)
        except RelayConnectionError as exc:
            if not self._is_current(generation):
                return False
            self._phase = SyncPhase.ERROR
            self._report("connect to relay", exc)
            return False
        if not self._is_current(generation):
            return False
        self._phase = SyncPhase.LIVE
        logger.info("%s connected to relay", self.source)
        self._notify_changed()
        return True

    async def _request(self, **query: Any) -> List[Event]:
        """Historical relay query bounded by ``settings.request_timeout``."""
        try:
            return await asyncio.wait_for(
                self._store.request_past_events(**query),
                timeout=self.settings.request_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise RelayConnectionError(
                f"Relay query timed out after {self.settings.request_timeout}s"
            ) from exc

    async def _read_cached(self, event_id: str) -> Optional[Event]:
        try:
            return await self._store.get_cached_event(event_id)
        except Exception as exc:
            logger.warning("Cache lookup for %s failed: %s", event_id, exc)
            return None

    async def _write_cached(self, event: Event) -> None:
        try:
            await self._store.cache_event(event)
        except Exception as exc:
            logger.warning("Caching %s failed: %s", event.id, exc)

    def _listen(
        self,
        kind: int,
        handler: Callable[[Event], Awaitable[None]],
        *,
        limit: Optional[int] = None,
    ) -> LiveSubscription:
        subscription = self._store.listen_to_events(kind=kind, limit=limit)
        self._subscriptions.append(subscription)
        task = asyncio.ensure_future(subscription.forward(handler, self._on_stream_error))
        self._tasks.append(task)
        return subscription

    def _on_stream_error(self, exc: Exception) -> None:
        if self._active:
            self._report("receive live events", exc)

    def _on_connection_change(self, previous: ConnectionState, current: ConnectionState) -> None:
        if not self._active:
            return
        if previous == ConnectionState.LIVE and current == ConnectionState.DISCONNECTED:
            self._phase = SyncPhase.DISCONNECTED
            self._cancel_subscriptions()
            self._report("stay connected to relay", RelayConnectionError("Relay connection lost"))

    # Teardown

    def _cancel_subscriptions(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()

    async def _release(self, permanent: bool) -> None:
        self._active = False
        self._generation += 1
        self._clear_loading()
        self._cancel_subscriptions()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_store:
            await self._store.disconnect(permanent=permanent)
        self.connection.reset()

    async def stop(self) -> None:
        """Cancel live subscriptions and release the connection; the view is kept."""
        await self._release(permanent=False)
        if self._phase != SyncPhase.SHUTDOWN:
            self._phase = SyncPhase.DISCONNECTED
        logger.info("%s stopped", self.source)

    async def shutdown(self) -> None:
        """Stop permanently and discard in-memory state; nothing is emitted afterwards."""
        await self._release(permanent=True)
        self.notifier.close()
        self._reset_state()
        self.clear_error()
        self._shut_down = True
        self._phase = SyncPhase.SHUTDOWN
        logger.info("%s shut down", self.source)

    async def reinitialize(self) -> None:
        """Run the initialization sequence again from a clean state."""
        if not self._shut_down:
            await self._release(permanent=False)
        self._shut_down = False
        self.notifier.reopen()
        self._reset_state()
        self.clear_error()
        await self.start()

    async def retry(self) -> None:
        """Clear the error and view, then re-run initialization.

        Raises the error that stopped initialization, after recording it.
        """
        await self.reinitialize()
        if self._last_error is not None:
            raise self._last_error
