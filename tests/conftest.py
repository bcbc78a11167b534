"""Shared pytest fixtures for all tests."""
import asyncio
import hashlib
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from relay_sync import (
    ClientRef,
    ClientSignatureRef,
    Event,
    InMemoryEventStore,
    InMemorySecretStore,
    KeyMaterial,
    Settings,
    Signer,
    Tag,
    compute_event_id,
    encode_tags,
)
from relay_sync.signing import client_signature_payload, has_client_tag

RELAY_URL = "wss://relay.test"

ALICE = "a" * 64
BOB = "b" * 64
CAROL = "c" * 64


def make_event(**overrides: Any) -> Event:
    """Build an Event with defaults for all required fields.

    The id is derived from the other fields unless overridden, so two
    calls with the same fields produce the same event.
    """
    defaults: dict[str, Any] = {
        "pubkey": ALICE,
        "kind": 1,
        "content": "hello",
        "tags": [],
        "created_at": 1_700_000_000,
        "sig": "",
    }
    defaults.update(overrides)
    if "id" not in defaults:
        draft = Event(id="draft", **defaults)
        defaults["id"] = compute_event_id(
            draft.pubkey, draft.created_at, draft.kind, encode_tags(draft.tags), draft.content
        )
    return Event(**defaults)


def make_post(created_at: int, **overrides: Any) -> Event:
    overrides.setdefault("content", f"post at {created_at}")
    return make_event(created_at=created_at, **overrides)


def make_comment(root_id: str, created_at: int, **overrides: Any) -> Event:
    overrides.setdefault("content", f"comment at {created_at}")
    return make_event(
        created_at=created_at,
        tags=[["e", root_id, "", "reply"]],
        **overrides,
    )


def make_reaction(target_id: str, pubkey: str, created_at: int, content: str = "+") -> Event:
    return make_event(
        kind=7,
        pubkey=pubkey,
        content=content,
        created_at=created_at,
        tags=[["e", target_id], ["p", ALICE]],
    )


class FakeSigner(Signer):
    """Deterministic signer: hashes stand in for real signatures."""

    def __init__(self, client_name: str = "relay-sync", client_version: str = "0.1.0") -> None:
        self.client_name = client_name
        self.client_version = client_version
        self.signed: List[Event] = []

    def public_key(self, private_key: str) -> str:
        return hashlib.sha256(private_key.encode()).hexdigest()

    async def sign(
        self,
        *,
        content: str,
        tags: Sequence[Tag],
        kind: int,
        created_at: int,
        private_key: str,
    ) -> Event:
        pubkey = self.public_key(private_key)
        event_id = compute_event_id(pubkey, created_at, kind, encode_tags(tags), content)
        event = Event(
            id=event_id,
            pubkey=pubkey,
            kind=kind,
            content=content,
            tags=tuple(tags),
            created_at=created_at,
            sig=hashlib.sha256((event_id + private_key).encode()).hexdigest(),
        )
        self.signed.append(event)
        return event

    async def add_client_signature_tag(self, tags: Sequence[Tag], created_at: int) -> List[Tag]:
        if has_client_tag(tags, self.client_name):
            return list(tags)
        payload = client_signature_payload(self.client_name, self.client_version, created_at)
        return [
            *tags,
            ClientRef(name=self.client_name, version=self.client_version),
            ClientSignatureRef(
                signature=hashlib.sha256(payload.encode()).hexdigest(),
                timestamp=str(created_at),
            ),
        ]


@pytest.fixture
def settings() -> Settings:
    return Settings(relay_url=RELAY_URL, request_timeout=2.0)


@pytest.fixture
def unconfigured_settings() -> Settings:
    return Settings(relay_url=None)


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def secret_store() -> InMemorySecretStore:
    return InMemorySecretStore({"private_key": "1" * 64})


@pytest.fixture
def keys(secret_store: InMemorySecretStore) -> KeyMaterial:
    return KeyMaterial(secret_store)


async def drain(rounds: int = 10) -> None:
    """Let live-subscription tasks process what has been delivered."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def post_series(newest: int, count: int, step: int = 1, pubkey: Optional[str] = None) -> List[Event]:
    """``count`` top-level posts at ``newest``, ``newest - step``, ..."""
    return [
        make_post(newest - i * step, pubkey=pubkey or ALICE)
        for i in range(count)
    ]


class GatedEventStore(InMemoryEventStore):
    """In-memory facade whose matching queries answer only once ``gate`` is set.

    The answer is computed when the query arrives, so releasing the gate
    hands back a result that predates anything done in the meantime.
    """

    def __init__(self, matches: Callable[[Dict[str, Any]], bool], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._matches = matches
        self.gate = asyncio.Event()

    async def request_past_events(self, **query: Any) -> List[Event]:
        events = await super().request_past_events(**query)
        if self._matches(query):
            await self.gate.wait()
        return events
