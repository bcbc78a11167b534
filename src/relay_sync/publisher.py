"""Publisher: compose → sign → submit → cache.

Preconditions (a live relay connection and a resolved signing key) are
checked before any I/O. Once the relay has accepted an event, failing to
cache it is logged and does not fail the publish.
"""
import logging
import time
from typing import Callable, List, Mapping, Optional, Sequence

from relay_sync.compose import compose_tags, quote_tags, reaction_tags, reply_tags
from relay_sync.config import Settings, get_settings
from relay_sync.error_log import ErrorLog
from relay_sync.keys import KeyMaterial
from relay_sync.models import (
    KIND_REACTION,
    KIND_TEXT_NOTE,
    REACTION_LIKE,
    REACTION_UNLIKE,
    Event,
    PublishPreconditionError,
    RelaySyncError,
)
from relay_sync.signing import Signer
from relay_sync.storage import EventStoreFacade, InMemoryErrorStorage
from relay_sync.tags import Tag

logger = logging.getLogger("relay_sync.publisher")


class Publisher:
    """Builds, signs and submits new events."""

    def __init__(
        self,
        store: EventStoreFacade,
        signer: Signer,
        keys: KeyMaterial,
        *,
        settings: Optional[Settings] = None,
        error_log: Optional[ErrorLog] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._signer = signer
        self._keys = keys
        self.settings = settings if settings is not None else get_settings()
        self.error_log = (
            error_log
            if error_log is not None
            else ErrorLog(InMemoryErrorStorage(self.settings.error_retention))
        )
        self._clock = clock

    async def _check_preconditions(self) -> str:
        if not self._store.is_connected:
            raise PublishPreconditionError("Not connected to relay. Please wait for connection.")
        private_key = self._keys.private_key() or await self._keys.load()
        if not private_key:
            raise PublishPreconditionError("No signing key available")
        return private_key

    async def _publish(self, action: str, kind: int, content: str, tags: Sequence[Tag]) -> Event:
        try:
            private_key = await self._check_preconditions()
            created_at = int(self._clock())
            signed_tags: List[Tag] = await self._signer.add_client_signature_tag(tags, created_at)
            event = await self._signer.sign(
                content=content,
                tags=signed_tags,
                kind=kind,
                created_at=created_at,
                private_key=private_key,
            )
            self._store.publish_event(event.to_dict())
        except RelaySyncError as exc:
            self.error_log.record(action, exc, source="publisher")
            raise
        logger.info("Published kind %d event %s", kind, event.id)

        try:
            await self._store.cache_event(event)
        except Exception as exc:
            logger.warning("Published %s but caching it failed: %s", event.id, exc)
        return event

    async def publish_post(
        self, content: str, *, mentions: Optional[Mapping[str, str]] = None
    ) -> Event:
        tags = compose_tags(content, mentions=mentions)
        return await self._publish("publish post", KIND_TEXT_NOTE, content, tags)

    async def publish_comment(
        self,
        root_id: str,
        content: str,
        *,
        mentions: Optional[Mapping[str, str]] = None,
    ) -> Event:
        tags = compose_tags(content, structural=reply_tags(root_id), mentions=mentions)
        return await self._publish("publish comment", KIND_TEXT_NOTE, content, tags)

    async def publish_quote(
        self,
        quoted_id: str,
        quoted_author: str,
        content: str,
        *,
        mentions: Optional[Mapping[str, str]] = None,
    ) -> Event:
        tags = compose_tags(
            content, structural=quote_tags(quoted_id, quoted_author), mentions=mentions
        )
        return await self._publish("publish quote", KIND_TEXT_NOTE, content, tags)

    async def publish_reaction(
        self, target_id: str, target_author: str, *, unlike: bool = False
    ) -> Event:
        """Like (``"+"``) or withdraw a like (``"-"``) on ``target_id``."""
        content = REACTION_UNLIKE if unlike else REACTION_LIKE
        tags = reaction_tags(target_id, target_author)
        return await self._publish("publish reaction", KIND_REACTION, content, tags)
