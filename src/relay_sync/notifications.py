"""Change notifications emitted by the synchronizers.

Observers subscribe to a :class:`Broadcast` and get back a callable that
unsubscribes them. Once a :class:`Notifier` is closed, every emit is a
no-op so late callbacks from in-flight work never reach a disposed view.
"""
import logging
from typing import Callable, Generic, List, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from relay_sync.models import REACTION_LIKE, REACTION_UNLIKE

logger = logging.getLogger("relay_sync.notifications")

T = TypeVar("T")


class CommentUpdate(BaseModel):
    """A new comment was merged into a thread."""

    model_config = ConfigDict(frozen=True)

    post_id: str = Field(..., min_length=1, description="Root event id")
    comment_id: str = Field(..., min_length=1, description="Merged comment id")


class ReactionUpdate(BaseModel):
    """A reaction to the root or one of its comments arrived."""

    model_config = ConfigDict(frozen=True)

    target_id: str = Field(..., min_length=1, description="Reacted-to event id")
    pubkey: str = Field(..., description="Reacting author")
    content: str = Field(default=REACTION_LIKE, description="Reaction content")

    @property
    def is_like(self) -> bool:
        return self.content == REACTION_LIKE

    @property
    def is_unlike(self) -> bool:
        return self.content == REACTION_UNLIKE


class Broadcast(Generic[T]):
    """Synchronous fan-out of values to subscribed callbacks."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: List[Callable[[T], None]] = []

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, value: T) -> None:
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception:
                logger.exception("Subscriber to %s raised", self.name)

    def clear(self) -> None:
        self._subscribers.clear()


class Notifier:
    """Bundle of the channels one synchronizer publishes on."""

    def __init__(self) -> None:
        self.changed: Broadcast[None] = Broadcast("changed")
        self.comments: Broadcast[CommentUpdate] = Broadcast("comments")
        self.reactions: Broadcast[ReactionUpdate] = Broadcast("reactions")
        self._alive = True

    @property
    def alive(self) -> bool:
        return self._alive

    def notify_changed(self) -> None:
        if self._alive:
            self.changed.emit(None)

    def notify_comment(self, update: CommentUpdate) -> None:
        if self._alive:
            self.comments.emit(update)

    def notify_reaction(self, update: ReactionUpdate) -> None:
        if self._alive:
            self.reactions.emit(update)

    def close(self) -> None:
        """Stop delivering; subscribers are dropped."""
        self._alive = False
        self.changed.clear()
        self.comments.clear()
        self.reactions.clear()

    def reopen(self) -> None:
        self._alive = True
