"""
relay-sync: Sync and cache-consistency engine for relay-based social clients.

This library reconciles three event sources (a local cache, paginated
historical relay queries and a live push subscription) into one
deduplicated, time-ordered view per screen: the global feed of top-level
posts and the comment thread under a single post. It also aggregates
engagement (comment counts, most-recent-reaction-per-author likes) and
composes correctly tagged events for publishing.

Example:
    >>> import asyncio
    >>> from relay_sync import FeedSynchronizer, InMemoryEventStore, Settings
    >>> store = InMemoryEventStore()
    >>> feed = FeedSynchronizer(store, settings=Settings(relay_url="wss://relay.example"))
    >>> asyncio.run(feed.start())
    >>> feed.phase.value
    'live'

Collaborators:
    The relay transport, the persistent cache and signature creation are
    outside this package. They are consumed through
    :class:`EventStoreFacade` and :class:`Signer`; in-memory versions of the
    facade and of the secret storage ship for tests and offline use.
"""

__version__ = "0.1.0"

# Core data models
from relay_sync.models import (
    Event,
    ErrorEntry,
    RelaySyncError,
    ConfigurationError,
    RelayConnectionError,
    CacheError,
    NotFoundError,
    PublishPreconditionError,
    TransitionError,
    KIND_PROFILE,
    KIND_TEXT_NOTE,
    KIND_REACTION,
    REACTION_LIKE,
    REACTION_UNLIKE,
    compute_event_id,
    extract_hashtags,
)

# Tags
from relay_sync.tags import (
    Tag,
    EventRef,
    AuthorRef,
    HashtagRef,
    QuoteRef,
    UrlRef,
    UsernameRef,
    ClientRef,
    ClientSignatureRef,
    UnknownTag,
    decode_tag,
    encode_tag,
    decode_tags,
    encode_tags,
)

# Tag composition
from relay_sync.compose import (
    compose_tags,
    extract_urls,
    reply_tags,
    quote_tags,
    reaction_tags,
)

# Ordering
from relay_sync.ordering import dedup_events, merge_sort_dedupe

# Storage
from relay_sync.storage import (
    EventStoreFacade,
    LiveSubscription,
    InMemoryEventStore,
    ErrorStorage,
    InMemoryErrorStorage,
)

# Error logging
from relay_sync.error_log import ErrorLog

# Connection and notifications
from relay_sync.connection import ConnectionState, ConnectionStateMachine
from relay_sync.notifications import (
    Broadcast,
    CommentUpdate,
    Notifier,
    ReactionUpdate,
)

# Synchronizers
from relay_sync.synchronizer import BaseSynchronizer, SyncPhase
from relay_sync.feed import FeedSynchronizer
from relay_sync.thread import ThreadSynchronizer

# Engagement
from relay_sync.engagement import EngagementAggregator, ReactionLedger, reduce_reactions

# Identity and publishing
from relay_sync.signing import Signer
from relay_sync.keys import (
    InMemorySecretStore,
    KeyMaterial,
    KeySource,
    KeyState,
    SecretStore,
)
from relay_sync.publisher import Publisher

# Configuration
from relay_sync.config import Settings, get_settings

__all__ = [
    # Version
    "__version__",
    # Models
    "Event",
    "ErrorEntry",
    "compute_event_id",
    "extract_hashtags",
    "KIND_PROFILE",
    "KIND_TEXT_NOTE",
    "KIND_REACTION",
    "REACTION_LIKE",
    "REACTION_UNLIKE",
    # Exceptions
    "RelaySyncError",
    "ConfigurationError",
    "RelayConnectionError",
    "CacheError",
    "NotFoundError",
    "PublishPreconditionError",
    "TransitionError",
    # Tags
    "Tag",
    "EventRef",
    "AuthorRef",
    "HashtagRef",
    "QuoteRef",
    "UrlRef",
    "UsernameRef",
    "ClientRef",
    "ClientSignatureRef",
    "UnknownTag",
    "decode_tag",
    "encode_tag",
    "decode_tags",
    "encode_tags",
    # Composition
    "compose_tags",
    "extract_urls",
    "reply_tags",
    "quote_tags",
    "reaction_tags",
    # Ordering
    "dedup_events",
    "merge_sort_dedupe",
    # Storage
    "EventStoreFacade",
    "LiveSubscription",
    "InMemoryEventStore",
    "ErrorStorage",
    "InMemoryErrorStorage",
    "ErrorLog",
    # Connection and notifications
    "ConnectionState",
    "ConnectionStateMachine",
    "Broadcast",
    "CommentUpdate",
    "Notifier",
    "ReactionUpdate",
    # Synchronizers
    "BaseSynchronizer",
    "SyncPhase",
    "FeedSynchronizer",
    "ThreadSynchronizer",
    # Engagement
    "EngagementAggregator",
    "ReactionLedger",
    "reduce_reactions",
    # Identity and publishing
    "Signer",
    "SecretStore",
    "InMemorySecretStore",
    "KeyMaterial",
    "KeySource",
    "KeyState",
    "Publisher",
    # Configuration
    "Settings",
    "get_settings",
]
