"""Unit tests for typed tags and their wire form."""
import pytest
from pydantic import ValidationError as PydanticValidationError

from relay_sync.tags import (
    AuthorRef,
    ClientRef,
    ClientSignatureRef,
    EventRef,
    HashtagRef,
    QuoteRef,
    UnknownTag,
    UrlRef,
    UsernameRef,
    decode_tag,
    decode_tags,
    encode_tag,
    encode_tags,
)


class TestDecodeTag:
    """Tests for decode_tag."""

    @pytest.mark.parametrize("wire, expected", [
        (["e", "id1"], EventRef(event_id="id1")),
        (["e", "id1", "wss://r"], EventRef(event_id="id1", relay="wss://r")),
        (["e", "id1", "", "reply"], EventRef(event_id="id1", marker="reply")),
        (["p", "key"], AuthorRef(pubkey="key")),
        (["t", "nostr"], HashtagRef(tag="nostr")),
        (["q", "id2", "", "author"], QuoteRef(event_id="id2", author="author")),
        (["r", "https://x.org"], UrlRef(url="https://x.org")),
        (["u", "alice"], UsernameRef(name="alice")),
        (["client", "relay-sync", "0.1.0"], ClientRef(name="relay-sync", version="0.1.0")),
        (["client_sig", "sig", "170"], ClientSignatureRef(signature="sig", timestamp="170")),
    ])
    def test_known_markers(self, wire, expected):
        """Each known marker decodes to its typed variant."""
        assert decode_tag(wire) == expected

    def test_unknown_marker(self):
        """An unrecognised marker is kept as an unknown tag."""
        assert decode_tag(["zap", "1", "2"]) == UnknownTag(values=("zap", "1", "2"))

    def test_known_marker_without_value(self):
        """A known marker with no value is kept as an unknown tag."""
        assert decode_tag(["e"]) == UnknownTag(values=("e",))

    def test_known_marker_with_empty_value(self):
        """A known marker with an empty value is kept as an unknown tag."""
        assert decode_tag(["t", ""]) == UnknownTag(values=("t", ""))

    def test_empty_event_id_is_kept_verbatim(self):
        """An e tag with an empty id stays unknown and encodes back unchanged."""
        tag = decode_tag(["e", "", "", "reply"])
        assert tag == UnknownTag(values=("e", "", "", "reply"))
        assert encode_tag(tag) == ["e", "", "", "reply"]

    def test_empty_tag(self):
        """An empty tag decodes to an empty unknown tag."""
        assert decode_tag([]) == UnknownTag(values=())

    def test_extra_elements_beyond_known_positions_are_dropped(self):
        """Elements past the known positions are not kept."""
        assert decode_tag(["t", "nostr", "extra"]) == HashtagRef(tag="nostr")


class TestEncodeTag:
    """Tests for encode_tag."""

    def test_event_ref_plain(self):
        """A plain event reference encodes to two elements."""
        assert encode_tag(EventRef(event_id="id1")) == ["e", "id1"]

    def test_event_ref_marker_keeps_relay_position(self):
        """A marker keeps the empty relay slot before it."""
        assert encode_tag(EventRef(event_id="id1", marker="reply")) == ["e", "id1", "", "reply"]

    def test_quote_ref_author_keeps_relay_position(self):
        """A quote author keeps the empty relay slot before it."""
        assert encode_tag(QuoteRef(event_id="q", author="k")) == ["q", "q", "", "k"]

    def test_reaction_pair(self):
        """A reaction's e and p tags encode in order."""
        assert encode_tags([EventRef(event_id="t"), AuthorRef(pubkey="k")]) == [
            ["e", "t"],
            ["p", "k"],
        ]

    def test_unknown_round_trips_verbatim(self):
        """Unknown tags encode back exactly as received."""
        wire = ["custom", "a", "", "b"]
        assert encode_tag(decode_tag(wire)) == wire


class TestDecodeTags:
    """Tests for decode_tags."""

    def test_none_is_empty(self):
        """A missing tag list decodes to no tags."""
        assert decode_tags(None) == ()

    def test_rejects_non_list(self):
        """A tag list that is not a list is rejected."""
        with pytest.raises(ValueError):
            decode_tags({"e": "x"})

    def test_typed_tags_pass_through(self):
        """Already typed tags are kept as they are."""
        tag = HashtagRef(tag="x")
        assert decode_tags([tag]) == (tag,)

    def test_scalar_entry_becomes_unknown(self):
        """A scalar entry becomes a one-element unknown tag."""
        assert decode_tags([5]) == (UnknownTag(values=("5",)),)


class TestVariantValidation:
    """Tests for variant field constraints."""

    def test_event_ref_requires_id(self):
        """An event reference needs a non-empty id."""
        with pytest.raises(PydanticValidationError):
            EventRef(event_id="")

    def test_variants_are_frozen(self):
        """Tag variants cannot be changed after creation."""
        tag = HashtagRef(tag="x")
        with pytest.raises(Exception):
            setattr(tag, "tag", "y")

    def test_unknown_marker_property(self):
        """An unknown tag's marker is its first element."""
        assert UnknownTag(values=("zap", "1")).marker == "zap"
        assert UnknownTag().marker is None
