"""Property-based tests for feed view invariants."""
import asyncio

from hypothesis import given, settings, strategies as st

from relay_sync import FeedSynchronizer, InMemoryEventStore, Settings
from relay_sync.ordering import merge_sort_dedupe

from conftest import ALICE, BOB, CAROL, RELAY_URL, make_event


@st.composite
def note(draw):
    """A kind-1 note that may or may not reply to something."""
    created_at = draw(st.integers(min_value=0, max_value=60))
    pubkey = draw(st.sampled_from([ALICE, BOB, CAROL]))
    content = draw(st.text(alphabet="abc #", max_size=6))
    tags = draw(st.sampled_from([[], [], [["t", "abc"]], [["e", "root"]], [["p", BOB]]]))
    return make_event(created_at=created_at, pubkey=pubkey, content=content, tags=tags)


@st.composite
def with_duplicates(draw, max_size=25):
    """A list of notes where ids repeat."""
    pool = draw(st.lists(note(), min_size=1, max_size=10))
    picks = draw(st.lists(st.integers(min_value=0, max_value=len(pool) - 1), max_size=max_size))
    return [pool[i] for i in picks]


def assert_view_invariants(feed):
    view = feed.all_events
    ids = [e.id for e in view]
    assert len(ids) == len(set(ids))
    assert all(a.created_at >= b.created_at for a, b in zip(view, view[1:]))
    assert all(not e.event_refs and e.kind == 1 for e in view)
    if not view or feed.is_exhausted:
        assert feed.oldest_event_time is None
    else:
        assert feed.oldest_event_time == view[-1].created_at


class TestMergeSortDedupe:
    """Invariants of the central merge routine."""

    @settings(deadline=None)
    @given(with_duplicates())
    def test_unique_sorted_complete(self, events):
        """The merge keeps every id once, newest first."""
        result = merge_sort_dedupe(events)
        ids = [e.id for e in result]
        assert len(ids) == len(set(ids))
        assert set(ids) == {e.id for e in events}
        assert [e.created_at for e in result] == sorted((e.created_at for e in result), reverse=True)

    @settings(deadline=None)
    @given(with_duplicates())
    def test_idempotent(self, events):
        """Merging a merged list again changes nothing."""
        once = merge_sort_dedupe(events)
        assert merge_sort_dedupe(once) == once
        assert merge_sort_dedupe([*once, *events]) == once


class TestFeedInvariants:
    """Dedup, sort, cursor and comment exclusion across every entry path."""

    @settings(deadline=None, max_examples=50)
    @given(
        cached=with_duplicates(max_size=10),
        relay=with_duplicates(max_size=20),
        live=with_duplicates(max_size=10),
        pages=st.integers(min_value=0, max_value=3),
    )
    def test_any_interleaving(self, cached, relay, live, pages):
        """Any mix of cache, relay, live and page events keeps the view invariants."""
        async def scenario():
            store = InMemoryEventStore(cached_events=cached, relay_events=relay)
            feed = FeedSynchronizer(
                store, settings=Settings(relay_url=RELAY_URL, page_size=5)
            )
            await feed.start()
            assert_view_invariants(feed)
            for event in live:
                await feed.live_merge(event)
                assert_view_invariants(feed)
            for _ in range(pages):
                await feed.load_more()
                assert_view_invariants(feed)
            await feed.stop()
            return feed

        feed = asyncio.run(scenario())
        assert_view_invariants(feed)
        top_level = {e.id for e in [*cached, *relay, *live] if e.is_top_level}
        assert {e.id for e in feed.all_events} <= top_level
