"""Connection state machine shared by the synchronizers.

States: ``disconnected`` → ``connecting`` → ``live``, with ``failed`` as the
terminal-until-retry state when the connect attempt itself errors. A live
connection that drops returns to ``disconnected``.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, FrozenSet, List, Tuple

from relay_sync.models import RelayConnectionError, TransitionError
from relay_sync.storage import EventStoreFacade

logger = logging.getLogger("relay_sync.connection")


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LIVE = "live"
    FAILED = "failed"


_ALLOWED_TRANSITIONS: FrozenSet[Tuple[ConnectionState, ConnectionState]] = frozenset({
    (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
    (ConnectionState.FAILED, ConnectionState.CONNECTING),
    (ConnectionState.CONNECTING, ConnectionState.LIVE),
    (ConnectionState.CONNECTING, ConnectionState.FAILED),
    (ConnectionState.CONNECTING, ConnectionState.DISCONNECTED),
    (ConnectionState.LIVE, ConnectionState.DISCONNECTED),
    (ConnectionState.FAILED, ConnectionState.DISCONNECTED),
})

StateListener = Callable[[ConnectionState, ConnectionState], None]


class ConnectionStateMachine:
    """Tracks one synchronizer's view of the relay connection."""

    def __init__(self, name: str = "relay") -> None:
        self.name = name
        self._state = ConnectionState.DISCONNECTED
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_live(self) -> bool:
        return self._state == ConnectionState.LIVE

    def can_transition(self, to_state: ConnectionState) -> bool:
        return to_state == self._state or (self._state, to_state) in _ALLOWED_TRANSITIONS

    def transition(self, to_state: ConnectionState) -> None:
        """Move to ``to_state``; same-state transitions are no-ops."""
        if to_state == self._state:
            return
        if (self._state, to_state) not in _ALLOWED_TRANSITIONS:
            raise TransitionError(self._state.value, to_state.value)
        previous = self._state
        self._state = to_state
        logger.debug("%s connection %s -> %s", self.name, previous.value, to_state.value)
        for listener in list(self._listeners):
            listener(previous, to_state)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def on_relay_state(self, connected: bool) -> None:
        """Translate a facade connection callback into a transition."""
        if connected:
            if self._state == ConnectionState.LIVE:
                return
            if self._state != ConnectionState.CONNECTING:
                self.transition(ConnectionState.CONNECTING)
            self.transition(ConnectionState.LIVE)
        elif self._state in (ConnectionState.LIVE, ConnectionState.CONNECTING):
            self.transition(ConnectionState.DISCONNECTED)

    async def connect(self, store: EventStoreFacade) -> None:
        """Run a connect attempt against ``store``.

        On failure the machine ends in ``failed`` and the error propagates.
        """
        if self._state == ConnectionState.LIVE and store.is_connected:
            return
        self.transition(ConnectionState.CONNECTING)
        try:
            await store.connect(self.on_relay_state)
        except Exception as exc:
            if self._state != ConnectionState.CONNECTING:
                self.transition(ConnectionState.CONNECTING)
            self.transition(ConnectionState.FAILED)
            if isinstance(exc, RelayConnectionError):
                raise
            raise RelayConnectionError(str(exc)) from exc
        if self._state != ConnectionState.LIVE:
            self.transition(ConnectionState.FAILED)
            raise RelayConnectionError(f"{self.name}: relay did not report a live connection")

    def reset(self) -> None:
        """Return to ``disconnected`` from any state."""
        if self._state in (ConnectionState.LIVE, ConnectionState.FAILED, ConnectionState.CONNECTING):
            self.transition(ConnectionState.DISCONNECTED)
