"""Unit tests for the key material lifecycle."""
import pytest

from relay_sync.keys import (
    PRIVATE_KEY_NAME,
    InMemorySecretStore,
    KeyMaterial,
    KeySource,
    KeyState,
    generate_private_key,
)


class TestKeyMaterial:
    """Tests for KeyMaterial.ensure."""

    @pytest.mark.asyncio
    async def test_found_in_shared_storage(self):
        """A key already in shared storage is used as-is."""
        shared = InMemorySecretStore({PRIVATE_KEY_NAME: "k1"})
        keys = KeyMaterial(shared, InMemorySecretStore())
        assert await keys.ensure() == "k1"
        assert keys.source == KeySource.SHARED
        assert keys.history == [KeyState.ABSENT, KeyState.READY]

    @pytest.mark.asyncio
    async def test_migrated_from_legacy(self):
        """A key only in the legacy backup is copied to shared storage."""
        shared = InMemorySecretStore()
        legacy = InMemorySecretStore({PRIVATE_KEY_NAME: "old"})
        keys = KeyMaterial(shared, legacy)
        assert await keys.ensure() == "old"
        assert await shared.read(PRIVATE_KEY_NAME) == "old"
        assert keys.source == KeySource.LEGACY
        assert keys.history == [KeyState.ABSENT, KeyState.MIGRATED_TO_SHARED, KeyState.READY]

    @pytest.mark.asyncio
    async def test_generated_and_stored_both_places(self):
        """With no key anywhere, a new one is written to both stores."""
        shared, legacy = InMemorySecretStore(), InMemorySecretStore()
        keys = KeyMaterial(shared, legacy, generate=lambda: "fresh")
        assert await keys.ensure() == "fresh"
        assert await shared.read(PRIVATE_KEY_NAME) == "fresh"
        assert await legacy.read(PRIVATE_KEY_NAME) == "fresh"
        assert keys.history == [
            KeyState.ABSENT,
            KeyState.GENERATED,
            KeyState.STORED_BOTH_PLACES,
            KeyState.READY,
        ]

    @pytest.mark.asyncio
    async def test_generated_without_legacy_backend(self):
        """Generation works when no legacy backup is configured."""
        shared = InMemorySecretStore()
        keys = KeyMaterial(shared, generate=lambda: "fresh")
        assert await keys.ensure() == "fresh"
        assert keys.source == KeySource.GENERATED

    @pytest.mark.asyncio
    async def test_ensure_is_idempotent(self):
        """A second ensure() returns the same key without writing."""
        shared = InMemorySecretStore()
        keys = KeyMaterial(shared, InMemorySecretStore())
        first = await keys.ensure()
        writes = shared.writes
        assert await keys.ensure() == first
        assert shared.writes == writes

    @pytest.mark.asyncio
    async def test_rerun_after_migration_is_noop(self):
        """After a migration, a fresh instance reads the shared copy."""
        shared = InMemorySecretStore()
        legacy = InMemorySecretStore({PRIVATE_KEY_NAME: "old"})
        await KeyMaterial(shared, legacy).ensure()
        writes = shared.writes
        again = KeyMaterial(shared, legacy)
        assert await again.ensure() == "old"
        assert again.source == KeySource.SHARED
        assert shared.writes == writes

    @pytest.mark.asyncio
    async def test_private_key_before_ensure(self):
        """No key is held until resolution has run."""
        keys = KeyMaterial(InMemorySecretStore())
        assert keys.private_key() is None
        assert keys.state == KeyState.ABSENT
        await keys.ensure()
        assert keys.is_ready

    @pytest.mark.asyncio
    async def test_forget(self):
        """forget() drops the in-memory key and resets the state."""
        keys = KeyMaterial(InMemorySecretStore({PRIVATE_KEY_NAME: "k"}))
        await keys.ensure()
        keys.forget()
        assert keys.private_key() is None
        assert keys.state == KeyState.ABSENT


class TestLoad:
    """Tests for KeyMaterial.load."""

    @pytest.mark.asyncio
    async def test_reads_shared_storage(self):
        """load() returns the shared key and marks the material ready."""
        keys = KeyMaterial(InMemorySecretStore({PRIVATE_KEY_NAME: "k1"}))
        assert await keys.load() == "k1"
        assert keys.private_key() == "k1"
        assert keys.is_ready

    @pytest.mark.asyncio
    async def test_migrates_legacy_key(self):
        """load() migrates a legacy-only key into shared storage."""
        shared = InMemorySecretStore()
        keys = KeyMaterial(shared, InMemorySecretStore({PRIVATE_KEY_NAME: "old"}))
        assert await keys.load() == "old"
        assert await shared.read(PRIVATE_KEY_NAME) == "old"
        assert keys.source == KeySource.LEGACY

    @pytest.mark.asyncio
    async def test_never_generates(self):
        """With empty storage load() returns None and writes nothing."""
        shared, legacy = InMemorySecretStore(), InMemorySecretStore()
        keys = KeyMaterial(shared, legacy, generate=lambda: "fresh")
        assert await keys.load() is None
        assert shared.writes == 0
        assert legacy.writes == 0
        assert keys.state == KeyState.ABSENT

    @pytest.mark.asyncio
    async def test_sees_key_written_after_a_miss(self):
        """A key stored after an empty load() is found by the next one."""
        shared = InMemorySecretStore()
        keys = KeyMaterial(shared)
        assert await keys.load() is None
        await shared.write(PRIVATE_KEY_NAME, "later")
        assert await keys.load() == "later"


def test_generate_private_key_shape():
    """Generated keys are 64 hex characters and differ between calls."""
    key = generate_private_key()
    assert len(key) == 64
    assert key != generate_private_key()
