"""Tag Composer: derive the tag list of a new event from its content.

Composition order is fixed: structural tags, URL tags, hashtag tags,
mention tags. The client tags are appended afterwards by the signer.
Consumers locate the structural tag by position, so this order must not
change.
"""
import re
from typing import List, Mapping, Optional, Sequence

from relay_sync.models import extract_hashtags
from relay_sync.tags import (
    REPLY_MARKER,
    AuthorRef,
    EventRef,
    HashtagRef,
    QuoteRef,
    Tag,
    UrlRef,
)

URL_RE = re.compile(r"(?:https?://|www\.)[^\s<>\[\]{}|\\^`'\"]+", re.IGNORECASE)

_TRAILING_PUNCTUATION = ".,!?)]};:\"'"


def extract_urls(content: str) -> List[str]:
    """Find URLs in ``content``.

    ``www.`` URLs gain an ``https://`` scheme whatever the case of the
    prefix, so ``WWW.example.com`` becomes ``https://WWW.example.com``.
    Trailing punctuation is stripped, and duplicates are dropped keeping
    first appearance.
    """
    urls: List[str] = []
    for match in URL_RE.finditer(content):
        url = match.group(0).rstrip(_TRAILING_PUNCTUATION)
        if not url:
            continue
        if url.lower().startswith("www."):
            url = "https://" + url
        if url not in urls:
            urls.append(url)
    return urls


def url_tags(content: str) -> List[Tag]:
    return [UrlRef(url=url) for url in extract_urls(content)]


def hashtag_tags(content: str) -> List[Tag]:
    return [HashtagRef(tag=tag) for tag in extract_hashtags(content)]


def mention_tags(mentions: Optional[Mapping[str, str]]) -> List[Tag]:
    """One ``p`` tag per resolved mention; repeated keys collapse."""
    if not mentions:
        return []
    tags: List[Tag] = []
    seen = set()
    for pubkey in mentions.values():
        if not pubkey or pubkey in seen:
            continue
        seen.add(pubkey)
        tags.append(AuthorRef(pubkey=pubkey))
    return tags


# Structural tags


def reply_tags(root_id: str) -> List[Tag]:
    return [EventRef(event_id=root_id, marker=REPLY_MARKER)]


def quote_tags(quoted_id: str, quoted_author: str = "") -> List[Tag]:
    return [QuoteRef(event_id=quoted_id, author=quoted_author)]


def reaction_tags(target_id: str, target_author: str) -> List[Tag]:
    return [EventRef(event_id=target_id), AuthorRef(pubkey=target_author)]


def compose_tags(
    content: str,
    *,
    structural: Sequence[Tag] = (),
    mentions: Optional[Mapping[str, str]] = None,
) -> List[Tag]:
    """Assemble the tags for ``content`` in publish order."""
    tags: List[Tag] = list(structural)
    tags.extend(url_tags(content))
    tags.extend(hashtag_tags(content))
    tags.extend(mention_tags(mentions))
    return tags
