"""Core data models for relay-sync."""
import hashlib
import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from relay_sync.tags import (
    EVENT_MARKER,
    EventRef,
    HashtagRef,
    Tag,
    UnknownTag,
    decode_tags,
    encode_tags,
)

# Event kinds
KIND_PROFILE: int = 0
KIND_TEXT_NOTE: int = 1
KIND_REACTION: int = 7

# Reaction contents
REACTION_LIKE: str = "+"
REACTION_UNLIKE: str = "-"

# A hashtag is "#" plus word characters, not glued to a preceding word
HASHTAG_RE = re.compile(r"(?<!\w)#(\w+)")


def extract_hashtags(content: str) -> List[str]:
    """Return lower-cased hashtags found in ``content``, first appearance first."""
    seen: List[str] = []
    for match in HASHTAG_RE.finditer(content):
        tag = match.group(1).lower()
        if tag not in seen:
            seen.append(tag)
    return seen


def compute_event_id(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: Sequence[Sequence[str]],
    content: str,
) -> str:
    """Derive the content-addressed event id.

    The id is the lowercase hex SHA-256 of the compact JSON array
    ``[0, pubkey, created_at, kind, tags, content]``.
    """
    serialized = json.dumps(
        [0, pubkey, created_at, kind, [list(t) for t in tags], content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


class Event(BaseModel):
    """Immutable signed protocol event.

    ``id`` is the only deduplication key: two events with the same id are
    the same event regardless of which source delivered them.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Content-derived event identifier")
    pubkey: str = Field(..., description="Author public key")
    kind: int = Field(..., ge=0, description="Event kind (0=profile, 1=note, 7=reaction)")
    content: str = Field(default="", description="Event content")
    tags: Tuple[Tag, ...] = Field(default=(), description="Typed protocol tags")
    created_at: int = Field(
        ...,
        ge=0,
        description="Author-supplied unix timestamp in seconds (trusted for local sort only)",
    )
    sig: str = Field(default="", description="Author signature over the id")

    @field_validator("tags", mode="before")
    @classmethod
    def _decode_wire_tags(cls, v: object) -> object:
        return decode_tags(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: object) -> object:
        if isinstance(v, datetime):
            return int(v.timestamp())
        return v

    def __repr__(self) -> str:
        """Human-readable representation."""
        return (
            f"Event(id={self.id[:8]}..., "
            f"kind={self.kind}, "
            f"pubkey={self.pubkey[:8]}..., "
            f"created_at={self.created_at})"
        )

    # Tag-derived views

    @property
    def event_refs(self) -> List[str]:
        """Ids referenced through ``e`` tags, in tag order."""
        return [t.event_id for t in self.tags if isinstance(t, EventRef)]

    @property
    def first_event_ref(self) -> Optional[str]:
        refs = self.event_refs
        return refs[0] if refs else None

    @property
    def has_event_tag(self) -> bool:
        """True if any ``e`` tag carries a value slot, even an empty one."""
        return any(
            isinstance(t, EventRef)
            or (isinstance(t, UnknownTag) and t.marker == EVENT_MARKER and len(t.values) > 1)
            for t in self.tags
        )

    @property
    def is_top_level(self) -> bool:
        """A kind-1 note with no ``e`` tag.

        ``["e", ""]`` still marks a reply, to an event nobody can resolve.
        """
        return self.kind == KIND_TEXT_NOTE and not self.has_event_tag

    def references(self, event_id: str) -> bool:
        """True if any ``e`` tag points at ``event_id``."""
        return event_id in self.event_refs

    def is_comment_on(self, root_id: str) -> bool:
        """True if this is a kind-1 note whose first ``e`` tag is ``root_id``."""
        return self.kind == KIND_TEXT_NOTE and self.first_event_ref == root_id

    @property
    def hashtags(self) -> FrozenSet[str]:
        return frozenset(t.tag.lower() for t in self.tags if isinstance(t, HashtagRef))

    @property
    def content_hashtags(self) -> FrozenSet[str]:
        return frozenset(extract_hashtags(self.content))

    def matches_hashtag(self, tag: str) -> bool:
        """Case-folded match against ``t`` tags or ``#tag`` in the content."""
        wanted = tag.lstrip("#").lower()
        return wanted in self.hashtags or wanted in self.content_hashtags

    @property
    def created_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.created_at, tz=timezone.utc)

    # Wire form

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the wire JSON shape."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "kind": self.kind,
            "content": self.content,
            "tags": encode_tags(self.tags),
            "created_at": self.created_at,
            "sig": self.sig,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Deserialize from the wire JSON shape."""
        return cls(**data)


class ErrorEntry(BaseModel):
    """Record of a failed sync or publish step."""

    timestamp: datetime = Field(
        ...,
        description="When the error occurred"
    )
    action_attempted: str = Field(
        ...,
        min_length=1,
        description="What the engine tried to do (e.g. 'load more events')"
    )
    error_message: str = Field(
        ...,
        min_length=1,
        description="Exception message"
    )
    error_type: str = Field(
        default="RelaySyncError",
        description="Exception class name"
    )
    source: str = Field(
        default="unknown",
        description="Which component recorded the error (feed, thread:<id>, ...)"
    )

    def __repr__(self) -> str:
        """Human-readable representation."""
        return (
            f"ErrorEntry(timestamp={self.timestamp.isoformat()}, "
            f"action={self.action_attempted[:30]}..., "
            f"source={self.source})"
        )


# Custom Exceptions
class RelaySyncError(Exception):
    """Base exception for all library errors."""
    pass


class ConfigurationError(RelaySyncError):
    """Required configuration (relay endpoint) is missing."""
    pass


class RelayConnectionError(RelaySyncError):
    """Relay unreachable, dropped, or the operation needs a live connection."""
    pass


class CacheError(RelaySyncError):
    """Local cache read or write failed."""
    pass


class NotFoundError(RelaySyncError):
    """Event absent from the cache and from both relay scans."""

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(f"Event not found: {event_id}")


class PublishPreconditionError(RelaySyncError):
    """Publish rejected before any network I/O (not connected, no key)."""
    pass


class TransitionError(RelaySyncError):
    """Raised when a connection state transition is not allowed."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state} -> {to_state}")
