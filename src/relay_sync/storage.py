"""Event Store Facade contract, live subscriptions, and in-memory adapters.

The facade is the single seam between the sync engine and everything it
does not own: the relay connection, the on-disk cache, and the wire codec.
Implementations must make ``cache_event`` an idempotent upsert keyed by
event id; the engine relies on that instead of locking around writes.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import (
    Any,
    Awaitable,
    Callable,
    Deque,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Union,
)

from ulid import ULID

from relay_sync.models import ErrorEntry, Event, RelayConnectionError

logger = logging.getLogger("relay_sync.storage")

StateCallback = Callable[[bool], None]
EventHandler = Callable[[Event], Awaitable[None]]
ErrorHandler = Callable[[Exception], None]

_CLOSED = object()


class LiveSubscription:
    """Cancellable live stream of events for one subscription filter.

    Iterate with ``async for`` or hand a coroutine handler to
    :meth:`forward`. ``cancel()`` may be called any number of times; once
    cancelled no further event is delivered, even if some were queued.
    """

    def __init__(
        self,
        kind: int,
        *,
        limit: Optional[int] = None,
        on_cancel: Optional[Callable[["LiveSubscription"], None]] = None,
    ) -> None:
        self.subscription_id = str(ULID())
        self.kind = kind
        self.limit = limit
        self._on_cancel = on_cancel
        self._queue: "asyncio.Queue[Union[Event, Exception, object]]" = asyncio.Queue()
        self._cancelled = False

    def __repr__(self) -> str:
        return (
            f"LiveSubscription(id={self.subscription_id}, kind={self.kind}, "
            f"cancelled={self._cancelled})"
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def push(self, event: Event) -> None:
        """Deliver an event to the consumer (ignored once cancelled)."""
        if not self._cancelled:
            self._queue.put_nowait(event)

    def fail(self, error: Exception) -> None:
        """Deliver a stream error; the stream stays open."""
        if not self._cancelled:
            self._queue.put_nowait(error)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._queue.put_nowait(_CLOSED)
        if self._on_cancel is not None:
            self._on_cancel(self)

    def __aiter__(self) -> "LiveSubscription":
        return self

    async def __anext__(self) -> Event:
        if self._cancelled:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._cancelled:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item  # type: ignore[return-value]

    async def forward(
        self,
        handler: EventHandler,
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        """Await ``handler`` for every event until cancelled.

        Stream errors go to ``on_error`` (or the log) and do not end the
        stream.
        """
        while not self._cancelled:
            item = await self._queue.get()
            if item is _CLOSED or self._cancelled:
                break
            if isinstance(item, Exception):
                if on_error is not None:
                    on_error(item)
                else:
                    logger.warning(
                        "Error on subscription %s: %s", self.subscription_id, item
                    )
                continue
            await handler(item)  # type: ignore[arg-type]


class EventStoreFacade(ABC):
    """Abstract cache + relay access consumed by the sync engine."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def connect(self, on_state_change: StateCallback) -> None:
        """Open the relay connection; report transitions through the callback."""
        pass

    @abstractmethod
    async def query_cached_events(
        self,
        *,
        kind: Optional[int] = None,
        limit: Optional[int] = None,
        tag_key: Optional[str] = None,
        tag_value: Optional[str] = None,
        pubkey: Optional[str] = None,
    ) -> List[Event]:
        """Query the local cache only, newest first."""
        pass

    @abstractmethod
    async def request_past_events(
        self,
        *,
        kind: int,
        since: Optional[int] = None,
        until: Optional[int] = None,
        limit: Optional[int] = None,
        use_cache: bool = True,
        tags: Optional[Sequence[str]] = None,
        tag_key: str = "t",
    ) -> List[Event]:
        """Historical query, optionally answered from the cache first."""
        pass

    @abstractmethod
    def listen_to_events(
        self, *, kind: int, limit: Optional[int] = None
    ) -> LiveSubscription:
        """Open a live subscription for events of ``kind``."""
        pass

    @abstractmethod
    async def cache_event(self, event: Event) -> None:
        """Insert or replace ``event`` in the cache, keyed by id."""
        pass

    @abstractmethod
    async def get_cached_event(self, event_id: str) -> Optional[Event]:
        pass

    @abstractmethod
    def publish_event(self, event_json: Dict[str, Any]) -> None:
        """Send a signed event to the relay (fire-and-forget)."""
        pass

    @abstractmethod
    async def disconnect(self, permanent: bool = False) -> None:
        """Close the relay connection; ``permanent`` also drops cached data."""
        pass


def _has_tag(event: Event, tag_key: str, values: Sequence[str]) -> bool:
    for tag in event.tags:
        encoded = tag.encode()
        if len(encoded) > 1 and encoded[0] == tag_key and encoded[1] in values:
            return True
    return False


def _select(
    events: Iterable[Event],
    *,
    kind: Optional[int] = None,
    since: Optional[int] = None,
    until: Optional[int] = None,
    limit: Optional[int] = None,
    tag_key: Optional[str] = None,
    tag_values: Optional[Sequence[str]] = None,
    pubkey: Optional[str] = None,
) -> List[Event]:
    selected = []
    for event in events:
        if kind is not None and event.kind != kind:
            continue
        if pubkey is not None and event.pubkey != pubkey:
            continue
        if since is not None and event.created_at < since:
            continue
        if until is not None and event.created_at > until:
            continue
        if tag_values and not _has_tag(event, tag_key or "t", tag_values):
            continue
        selected.append(event)
    selected.sort(key=lambda e: e.created_at, reverse=True)
    if limit is not None:
        selected = selected[:limit]
    return selected


class InMemoryEventStore(EventStoreFacade):
    """Dictionary-backed facade holding both a cache and a simulated relay.

    Events known to the relay are cached as they are delivered, live
    subscribers receive every relay event of their kind (including events
    published through this store), and historical queries honour the same
    cache-first rule as the on-disk implementation.
    """

    def __init__(
        self,
        *,
        relay_events: Iterable[Event] = (),
        cached_events: Iterable[Event] = (),
        fail_connect: bool = False,
    ) -> None:
        self._relay: Dict[str, Event] = {e.id: e for e in relay_events}
        self._cache: Dict[str, Event] = {e.id: e for e in cached_events}
        self._subscriptions: Dict[str, LiveSubscription] = {}
        self._state_callbacks: List[StateCallback] = []
        self._connected = False
        self.fail_connect = fail_connect
        self.published: List[Dict[str, Any]] = []
        self.requests: List[Dict[str, Any]] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    @property
    def cached_ids(self) -> List[str]:
        return list(self._cache)

    def _notify(self, connected: bool) -> None:
        for callback in list(self._state_callbacks):
            callback(connected)

    async def connect(self, on_state_change: StateCallback) -> None:
        if on_state_change not in self._state_callbacks:
            self._state_callbacks.append(on_state_change)
        if self._connected:
            on_state_change(True)
            return
        if self.fail_connect:
            on_state_change(False)
            raise RelayConnectionError("Failed to connect to relay")
        self._connected = True
        logger.info("Connected to in-memory relay")
        self._notify(True)

    def drop_connection(self) -> None:
        """Simulate the relay closing the connection."""
        if not self._connected:
            return
        self._connected = False
        for subscription in list(self._subscriptions.values()):
            subscription.cancel()
        self._notify(False)

    async def query_cached_events(
        self,
        *,
        kind: Optional[int] = None,
        limit: Optional[int] = None,
        tag_key: Optional[str] = None,
        tag_value: Optional[str] = None,
        pubkey: Optional[str] = None,
    ) -> List[Event]:
        return _select(
            self._cache.values(),
            kind=kind,
            limit=limit,
            tag_key=tag_key,
            tag_values=[tag_value] if tag_value is not None else None,
            pubkey=pubkey,
        )

    async def request_past_events(
        self,
        *,
        kind: int,
        since: Optional[int] = None,
        until: Optional[int] = None,
        limit: Optional[int] = None,
        use_cache: bool = True,
        tags: Optional[Sequence[str]] = None,
        tag_key: str = "t",
    ) -> List[Event]:
        self.requests.append({
            "kind": kind,
            "since": since,
            "until": until,
            "limit": limit,
            "use_cache": use_cache,
            "tags": list(tags) if tags else None,
            "tag_key": tag_key,
        })
        query = dict(
            kind=kind, since=since, until=until, limit=limit,
            tag_key=tag_key, tag_values=tags,
        )
        if use_cache:
            cached = _select(self._cache.values(), **query)  # type: ignore[arg-type]
            if cached and (since is None or len(cached) >= (limit or 100)):
                logger.debug("Returning %d cached events", len(cached))
                return cached

        if not self._connected:
            raise RelayConnectionError("Not connected to relay. Call connect() first.")

        events = _select(self._relay.values(), **query)  # type: ignore[arg-type]
        for event in events:
            self._cache[event.id] = event
        return events

    def listen_to_events(
        self, *, kind: int, limit: Optional[int] = None
    ) -> LiveSubscription:
        if not self._connected:
            raise RelayConnectionError("Not connected to relay. Call connect() first.")
        subscription = LiveSubscription(kind, limit=limit, on_cancel=self._forget)
        self._subscriptions[subscription.subscription_id] = subscription
        return subscription

    def _forget(self, subscription: LiveSubscription) -> None:
        self._subscriptions.pop(subscription.subscription_id, None)

    def seed(self, events: Iterable[Event]) -> None:
        """Add relay history without notifying live subscribers."""
        for event in events:
            self._relay[event.id] = event

    def deliver(self, event: Event) -> None:
        """Simulate the relay pushing ``event`` to live subscribers."""
        self._relay[event.id] = event
        self._cache[event.id] = event
        for subscription in list(self._subscriptions.values()):
            if subscription.kind == event.kind:
                subscription.push(event)

    def fail_subscriptions(self, error: Exception) -> None:
        """Simulate a stream error on every open subscription."""
        for subscription in list(self._subscriptions.values()):
            subscription.fail(error)

    async def cache_event(self, event: Event) -> None:
        self._cache[event.id] = event

    async def get_cached_event(self, event_id: str) -> Optional[Event]:
        return self._cache.get(event_id)

    def publish_event(self, event_json: Dict[str, Any]) -> None:
        if not self._connected:
            raise RelayConnectionError("Not connected to relay")
        self.published.append(event_json)
        event = Event.from_dict(event_json)
        self._relay[event.id] = event
        for subscription in list(self._subscriptions.values()):
            if subscription.kind == event.kind:
                subscription.push(event)

    async def disconnect(self, permanent: bool = False) -> None:
        for subscription in list(self._subscriptions.values()):
            subscription.cancel()
        self._subscriptions.clear()
        self._state_callbacks.clear()
        self._connected = False
        if permanent:
            self._cache.clear()


class ErrorStorage(ABC):
    """Abstract storage for recorded sync errors."""

    @abstractmethod
    def append(self, entry: ErrorEntry) -> None:
        pass

    @abstractmethod
    def load_recent(self, limit: int) -> List[ErrorEntry]:
        """Return up to ``limit`` entries, newest first."""
        pass


class InMemoryErrorStorage(ErrorStorage):
    """Bounded in-memory error storage; oldest entries are evicted first."""

    def __init__(self, max_entries: int = 100) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be ≥ 1, got {max_entries}")
        self._entries: Deque[ErrorEntry] = deque(maxlen=max_entries)

    def append(self, entry: ErrorEntry) -> None:
        self._entries.append(entry)

    def load_recent(self, limit: int) -> List[ErrorEntry]:
        if limit < 1:
            raise ValueError(f"limit must be ≥ 1, got {limit}")
        return list(reversed(self._entries))[:limit]

    def clear(self) -> None:
        self._entries.clear()
