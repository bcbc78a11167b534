"""Typed protocol tags and their positional wire form.

A wire tag is a list of strings whose first element names the tag type
(``["e", "<event id>", "<relay>", "reply"]``). Inside the library every tag
is one of the frozen variants below; :func:`decode_tag` and
:func:`encode_tag` are the only places that deal with list positions.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

# ── Section 1: Markers ───────────────────────────────────────────────────────

EVENT_MARKER: str = "e"
AUTHOR_MARKER: str = "p"
HASHTAG_MARKER: str = "t"
QUOTE_MARKER: str = "q"
URL_MARKER: str = "r"
USERNAME_MARKER: str = "u"
CLIENT_MARKER: str = "client"
CLIENT_SIGNATURE_MARKER: str = "client_sig"

REPLY_MARKER: str = "reply"

# ── Section 2: Variants ──────────────────────────────────────────────────────


class EventRef(BaseModel):
    """Reference to another event (reply target, reaction target)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["e"] = "e"
    event_id: str = Field(..., min_length=1)
    relay: str = ""
    marker: str = ""

    def encode(self) -> List[str]:
        values = [EVENT_MARKER, self.event_id]
        if self.marker:
            values.extend([self.relay, self.marker])
        elif self.relay:
            values.append(self.relay)
        return values


class AuthorRef(BaseModel):
    """Reference to an author's public key (mentions, reaction targets)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["p"] = "p"
    pubkey: str = Field(..., min_length=1)
    relay: str = ""

    def encode(self) -> List[str]:
        values = [AUTHOR_MARKER, self.pubkey]
        if self.relay:
            values.append(self.relay)
        return values


class HashtagRef(BaseModel):
    """Topic hashtag, stored lower-cased without the leading ``#``."""

    model_config = ConfigDict(frozen=True)

    type: Literal["t"] = "t"
    tag: str = Field(..., min_length=1)

    def encode(self) -> List[str]:
        return [HASHTAG_MARKER, self.tag]


class QuoteRef(BaseModel):
    """Quoted event with optional relay hint and quoted author."""

    model_config = ConfigDict(frozen=True)

    type: Literal["q"] = "q"
    event_id: str = Field(..., min_length=1)
    relay: str = ""
    author: str = ""

    def encode(self) -> List[str]:
        values = [QUOTE_MARKER, self.event_id]
        if self.author:
            values.extend([self.relay, self.author])
        elif self.relay:
            values.append(self.relay)
        return values


class UrlRef(BaseModel):
    """URL mentioned in the event content."""

    model_config = ConfigDict(frozen=True)

    type: Literal["r"] = "r"
    url: str = Field(..., min_length=1)

    def encode(self) -> List[str]:
        return [URL_MARKER, self.url]


class UsernameRef(BaseModel):
    """Human-readable username attached to profile events."""

    model_config = ConfigDict(frozen=True)

    type: Literal["u"] = "u"
    name: str = Field(..., min_length=1)

    def encode(self) -> List[str]:
        return [USERNAME_MARKER, self.name]


class ClientRef(BaseModel):
    """Identifies the client application that produced the event."""

    model_config = ConfigDict(frozen=True)

    type: Literal["client"] = "client"
    name: str = Field(..., min_length=1)
    version: str = ""

    def encode(self) -> List[str]:
        values = [CLIENT_MARKER, self.name]
        if self.version:
            values.append(self.version)
        return values


class ClientSignatureRef(BaseModel):
    """Client attestation signature bound to the event timestamp."""

    model_config = ConfigDict(frozen=True)

    type: Literal["client_sig"] = "client_sig"
    signature: str = Field(..., min_length=1)
    timestamp: str = ""

    def encode(self) -> List[str]:
        values = [CLIENT_SIGNATURE_MARKER, self.signature]
        if self.timestamp:
            values.append(self.timestamp)
        return values


class UnknownTag(BaseModel):
    """Any tag this library does not interpret, kept verbatim."""

    model_config = ConfigDict(frozen=True)

    type: Literal["unknown"] = "unknown"
    values: Tuple[str, ...] = ()

    @property
    def marker(self) -> Optional[str]:
        return self.values[0] if self.values else None

    def encode(self) -> List[str]:
        return list(self.values)


Tag = Union[
    EventRef,
    AuthorRef,
    HashtagRef,
    QuoteRef,
    UrlRef,
    UsernameRef,
    ClientRef,
    ClientSignatureRef,
    UnknownTag,
]

TAG_TYPES: Tuple[type, ...] = (
    EventRef,
    AuthorRef,
    HashtagRef,
    QuoteRef,
    UrlRef,
    UsernameRef,
    ClientRef,
    ClientSignatureRef,
    UnknownTag,
)

# ── Section 3: Wire conversion ───────────────────────────────────────────────


def _opt(values: Sequence[str], index: int) -> str:
    return values[index] if len(values) > index else ""


_DECODERS: Dict[str, Callable[[Sequence[str]], Tag]] = {
    EVENT_MARKER: lambda v: EventRef(event_id=v[1], relay=_opt(v, 2), marker=_opt(v, 3)),
    AUTHOR_MARKER: lambda v: AuthorRef(pubkey=v[1], relay=_opt(v, 2)),
    HASHTAG_MARKER: lambda v: HashtagRef(tag=v[1]),
    QUOTE_MARKER: lambda v: QuoteRef(event_id=v[1], relay=_opt(v, 2), author=_opt(v, 3)),
    URL_MARKER: lambda v: UrlRef(url=v[1]),
    USERNAME_MARKER: lambda v: UsernameRef(name=v[1]),
    CLIENT_MARKER: lambda v: ClientRef(name=v[1], version=_opt(v, 2)),
    CLIENT_SIGNATURE_MARKER: lambda v: ClientSignatureRef(signature=v[1], timestamp=_opt(v, 2)),
}


def decode_tag(values: Sequence[object]) -> Tag:
    """Decode one positional wire tag into its typed variant.

    Tags with an unrecognised marker, or a recognised marker but an empty
    second element, decode to :class:`UnknownTag` so nothing is lost on a
    decode/encode round trip.
    """
    strings = [str(v) for v in values]
    if len(strings) >= 2 and strings[1]:
        decoder = _DECODERS.get(strings[0])
        if decoder is not None:
            return decoder(strings)
    return UnknownTag(values=tuple(strings))


def encode_tag(tag: Tag) -> List[str]:
    """Encode a typed tag back to its positional wire form."""
    return tag.encode()


def decode_tags(raw: object) -> Tuple[Tag, ...]:
    """Decode a wire tag list.

    Non-list entries are coerced to a single-element tag of their string
    form; ``None`` decodes to an empty tuple.
    """
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise ValueError(f"tags must be a list; got {type(raw).__name__}")
    decoded: List[Tag] = []
    for entry in raw:
        if isinstance(entry, TAG_TYPES):
            decoded.append(entry)  # type: ignore[arg-type]
        elif isinstance(entry, (list, tuple)):
            decoded.append(decode_tag(entry))
        else:
            decoded.append(UnknownTag(values=(str(entry),)))
    return tuple(decoded)


def encode_tags(tags: Sequence[Tag]) -> List[List[str]]:
    """Encode typed tags to the wire list-of-lists form."""
    return [encode_tag(tag) for tag in tags]
