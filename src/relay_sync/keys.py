"""Key Material Lifecycle.

A signing key is resolved once per engine initialization:

1. found in shared secure storage → ``ready``
2. found in the legacy encrypted backup → copied to shared storage → ``ready``
3. otherwise generated, written to shared storage and duplicated into the
   legacy backup → ``ready``

Every branch is safe to re-run: once shared storage holds the key, the
later branches never execute. ``load()`` runs only the first two steps and
is what the publisher uses before each signature.
"""
import logging
import secrets
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Dict, List, Optional

logger = logging.getLogger("relay_sync.keys")

PRIVATE_KEY_NAME = "private_key"


def generate_private_key() -> str:
    """Return 32 random bytes as lowercase hex."""
    return secrets.token_hex(32)


class SecretStore(ABC):
    """Abstract secure storage for key material."""

    @abstractmethod
    async def read(self, name: str) -> Optional[str]:
        pass

    @abstractmethod
    async def write(self, name: str, value: str) -> None:
        pass

    @abstractmethod
    async def delete(self, name: str) -> None:
        pass


class InMemorySecretStore(SecretStore):
    """Dictionary-backed secret storage."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})
        self.writes = 0

    async def read(self, name: str) -> Optional[str]:
        return self._values.get(name)

    async def write(self, name: str, value: str) -> None:
        self.writes += 1
        self._values[name] = value

    async def delete(self, name: str) -> None:
        self._values.pop(name, None)


class KeyState(str, Enum):
    ABSENT = "absent"
    MIGRATED_TO_SHARED = "migrated_to_shared"
    GENERATED = "generated"
    STORED_BOTH_PLACES = "stored_both_places"
    READY = "ready"


class KeySource(str, Enum):
    SHARED = "shared"
    LEGACY = "legacy"
    GENERATED = "generated"


class KeyMaterial:
    """Resolves and holds the signing key for one engine."""

    def __init__(
        self,
        shared: SecretStore,
        legacy: Optional[SecretStore] = None,
        *,
        generate: Callable[[], str] = generate_private_key,
        key_name: str = PRIVATE_KEY_NAME,
    ) -> None:
        self._shared = shared
        self._legacy = legacy
        self._generate = generate
        self._key_name = key_name
        self._key: Optional[str] = None
        self._state = KeyState.ABSENT
        self._source: Optional[KeySource] = None
        self.history: List[KeyState] = [KeyState.ABSENT]

    @property
    def state(self) -> KeyState:
        return self._state

    @property
    def source(self) -> Optional[KeySource]:
        return self._source

    @property
    def is_ready(self) -> bool:
        return self._state == KeyState.READY

    def private_key(self) -> Optional[str]:
        """The resolved key, or None before :meth:`load` or :meth:`ensure` has run."""
        return self._key

    def _advance(self, state: KeyState) -> None:
        self._state = state
        self.history.append(state)

    async def load(self) -> Optional[str]:
        """Resolve the key from storage without ever generating one.

        Shared storage is read first; a key found only in the legacy backup
        is migrated to shared storage. Returns None when neither holds one.
        """
        if self._key is not None:
            return self._key

        key = await self._shared.read(self._key_name)
        if key:
            self._source = KeySource.SHARED
        elif self._legacy is not None and (key := await self._legacy.read(self._key_name)):
            await self._shared.write(self._key_name, key)
            self._source = KeySource.LEGACY
            self._advance(KeyState.MIGRATED_TO_SHARED)
            logger.info("Migrated signing key from legacy backup to shared storage")
        else:
            return None

        self._key = key
        self._advance(KeyState.READY)
        return key

    async def ensure(self) -> str:
        """Resolve the key, migrating or generating it when needed."""
        key = await self.load()
        if key is not None:
            return key

        key = self._generate()
        self._advance(KeyState.GENERATED)
        await self._shared.write(self._key_name, key)
        if self._legacy is not None:
            await self._legacy.write(self._key_name, key)
        self._source = KeySource.GENERATED
        self._advance(KeyState.STORED_BOTH_PLACES)
        logger.info("Generated new signing key")

        self._key = key
        self._advance(KeyState.READY)
        return key

    def forget(self) -> None:
        """Drop the in-memory key; storage is left untouched."""
        self._key = None
        self._source = None
        self._state = KeyState.ABSENT
        self.history = [KeyState.ABSENT]
