"""Signing/identity collaborator contract.

Signature creation and verification live outside this library. The engine
only needs something that turns content + tags into a signed
:class:`~relay_sync.models.Event` and that appends the client
identification tags before signing.
"""
from abc import ABC, abstractmethod
from typing import List, Sequence

from relay_sync.models import Event
from relay_sync.tags import ClientRef, Tag


class Signer(ABC):
    """Abstract signing collaborator."""

    @abstractmethod
    def public_key(self, private_key: str) -> str:
        """Derive the author key for ``private_key``."""
        pass

    @abstractmethod
    async def sign(
        self,
        *,
        content: str,
        tags: Sequence[Tag],
        kind: int,
        created_at: int,
        private_key: str,
    ) -> Event:
        """Return the signed event built from the given fields."""
        pass

    @abstractmethod
    async def add_client_signature_tag(
        self, tags: Sequence[Tag], created_at: int
    ) -> List[Tag]:
        """Return ``tags`` with the client tags appended last."""
        pass


def has_client_tag(tags: Sequence[Tag], name: str) -> bool:
    """True if ``tags`` already identify the client ``name``."""
    return any(isinstance(t, ClientRef) and t.name == name for t in tags)


def client_signature_payload(name: str, version: str, created_at: int) -> str:
    """Message the client key signs: ``name:version:timestamp``."""
    return f"{name}:{version}:{created_at}"
