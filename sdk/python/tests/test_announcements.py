"""
Property-based tests for announcement parsing and reconciliation.

Feature: gitrelay
"""

import asyncio
import dataclasses
import json

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from gitrelay.announcements import (
    AnnouncementParser,
    AnnouncementReconciler,
    EventResolver,
    normalize_contributors,
)
from gitrelay.bech32 import npub_encode
from gitrelay.cache import RepositoryCache
from gitrelay.config import ResolverConfig
from gitrelay.event import KIND_REPOSITORY_LEGACY, RelayEvent
from gitrelay.exceptions import CorruptedError, NotFoundError
from gitrelay.testing import MockRelayPool, make_announcement_event, make_key
from gitrelay.types.announcements import Contributor, ContributorRole
from gitrelay.types.storage import StoredRepository

OWNER = make_key("owner")
OTHER = make_key("someone-else")


def event(created_at: int, clone: list[str] | None = None, **kwargs) -> RelayEvent:
    parsed = RelayEvent.from_dict(make_announcement_event(OWNER, "demo", created_at=created_at, clone=clone, **kwargs))
    assert parsed is not None
    return parsed


# ============================================================================
# Reconciliation
# ============================================================================


class TestReconciler:
    def test_newer_record_replaces_older(self) -> None:
        reconciler = AnnouncementReconciler(OWNER, "demo")
        reconciler.offer(event(100, ["https://github.com/a/old"]))
        reconciler.offer(event(150, ["https://github.com/a/new"]))

        assert reconciler.result().clone_locations == ["https://github.com/a/new"]

    def test_older_record_arriving_late_is_ignored(self) -> None:
        reconciler = AnnouncementReconciler(OWNER, "demo")
        reconciler.offer(event(150, ["https://github.com/a/new"]))
        assert reconciler.offer(event(100, ["https://github.com/a/old"]))

        result = reconciler.result()
        assert result.created_at == 150
        # a single record, never a merge
        assert result.clone_locations == ["https://github.com/a/new"]

    def test_tie_breaks_on_greatest_id(self) -> None:
        first = event(100, ["https://github.com/a/one"])
        second = event(100, ["https://github.com/a/two"])
        winner = max(first, second, key=lambda e: e.id)

        for order in ((first, second), (second, first)):
            reconciler = AnnouncementReconciler(OWNER, "demo")
            for item in order:
                reconciler.offer(item)
            assert reconciler.result().event_id == winner.id

    @given(data=st.data(), timestamps=st.lists(st.integers(min_value=1, max_value=50), min_size=1, max_size=8))
    @settings(max_examples=100)
    def test_property_result_is_max_created_at_then_id(self, data: st.DataObject, timestamps: list[int]) -> None:
        """
        Property: for any arrival order, the announcement comes from the
        record with the greatest (created_at, id).
        """
        events = [event(ts, [f"https://github.com/a/r{i}"]) for i, ts in enumerate(timestamps)]
        arrival = data.draw(st.permutations(events))

        reconciler = AnnouncementReconciler(OWNER, "demo")
        for item in arrival:
            reconciler.offer(item)

        best = max(events, key=lambda e: (e.created_at, e.id))
        result = reconciler.result()
        assert result.event_id == best.id
        assert result.created_at == max(timestamps)
        assert result.clone_locations == [t[1] for t in best.tags if t[0] == "clone"]

    def test_wrong_author_is_dropped(self) -> None:
        reconciler = AnnouncementReconciler(OWNER, "demo")
        foreign = RelayEvent.from_dict(make_announcement_event(OTHER, "demo", created_at=999))
        assert not reconciler.offer(foreign)
        with pytest.raises(NotFoundError):
            reconciler.result()

    def test_invalid_id_is_dropped(self) -> None:
        raw = make_announcement_event(OWNER, "demo", created_at=999)
        raw["created_at"] = 1000
        reconciler = AnnouncementReconciler(OWNER, "demo")
        assert not reconciler.offer(RelayEvent.from_dict(raw))

    def test_invalid_id_accepted_when_verification_disabled(self) -> None:
        raw = make_announcement_event(OWNER, "demo", created_at=999)
        raw["created_at"] = 1000
        reconciler = AnnouncementReconciler(OWNER, "demo", verify_ids=False)
        assert reconciler.offer(RelayEvent.from_dict(raw))

    def test_other_repository_is_dropped(self) -> None:
        reconciler = AnnouncementReconciler(OWNER, "demo")
        other = RelayEvent.from_dict(make_announcement_event(OWNER, "other", created_at=5))
        assert not reconciler.offer(other)

    def test_legacy_kind_is_accepted(self) -> None:
        reconciler = AnnouncementReconciler(OWNER, "demo")
        assert reconciler.offer(event(5, kind=KIND_REPOSITORY_LEGACY))
        assert reconciler.result().kind == KIND_REPOSITORY_LEGACY

    def test_newest_corrupted_record_is_refused(self) -> None:
        reconciler = AnnouncementReconciler(OWNER, "demo")
        reconciler.offer(event(100, ["https://github.com/a/ok"]))
        reconciler.offer(event(200, content={"ownerPubkey": OTHER}))

        with pytest.raises(CorruptedError):
            reconciler.result()

    def test_older_corrupted_record_is_superseded(self) -> None:
        reconciler = AnnouncementReconciler(OWNER, "demo")
        reconciler.offer(event(100, content={"ownerPubkey": OTHER}))
        reconciler.offer(event(200, ["https://github.com/a/ok"]))

        assert reconciler.result().created_at == 200


# ============================================================================
# Parsing
# ============================================================================


class TestParser:
    def test_tags(self) -> None:
        parsed = AnnouncementParser().parse(event(
            10,
            clone=["https://github.com/a/demo", "https://relay.ngit.dev/npub1x/demo.git"],
            relays=["wss://relay.ngit.dev,relay.damus.io", "ftp://nope"],
            tags=[
                ["description", "A demo"],
                ["t", "python"],
                ["t", "git"],
                ["web", "https://demo.example"],
                ["source", "https://github.com/upstream/demo"],
                ["p", OTHER, "60", "maintainer"],
                ["p", "octocat", "10"],
            ],
        ))

        assert parsed.repo_name == "demo"
        assert parsed.description == "A demo"
        assert parsed.clone_locations == ["https://github.com/a/demo", "https://relay.ngit.dev/npub1x/demo.git"]
        assert parsed.relay_list == ["wss://relay.ngit.dev", "wss://relay.damus.io"]
        assert parsed.topics == ["python", "git"]
        assert parsed.web == ["https://demo.example"]
        assert parsed.source_mirror == "https://github.com/upstream/demo"

        assert parsed.contributors[0].key == OWNER
        assert parsed.contributors[0].is_owner
        assert parsed.contributors[1].key == OTHER
        assert parsed.contributors[1].role is ContributorRole.MAINTAINER
        assert parsed.contributors[2].login == "octocat"
        assert parsed.contributors[2].role is ContributorRole.CONTRIBUTOR

    def test_payload_fills_missing_tags(self) -> None:
        payload = {
            "description": "From payload",
            "clone": ["https://codeberg.org/a/demo"],
            "relays": ["wss://nos.lol"],
            "topics": ["x"],
            "defaultBranch": "trunk",
            "contributors": [{"pubkey": OTHER, "name": "Bob", "weight": 40, "githubLogin": "bob"}],
            "files": [{"path": "README.md", "content": "# Demo"}, {"path": ""}, "junk"],
        }
        parsed = AnnouncementParser().parse(event(10, content=json.dumps(payload)))

        assert parsed.description == "From payload"
        assert parsed.clone_locations == ["https://codeberg.org/a/demo"]
        assert parsed.relay_list == ["wss://nos.lol"]
        assert parsed.default_branch == "trunk"
        assert [c.display_name for c in parsed.contributors] == [None, "Bob"]
        assert [f.path for f in parsed.embedded_files] == ["README.md"]
        assert parsed.embedded_files[0].content == "# Demo"

    def test_tags_take_precedence_over_payload(self) -> None:
        parsed = AnnouncementParser().parse(
            event(10, clone=["https://github.com/a/tag"], content={"clone": ["https://github.com/a/payload"]})
        )
        assert parsed.clone_locations == ["https://github.com/a/tag"]

    def test_non_json_content_is_ignored(self) -> None:
        parsed = AnnouncementParser().parse(event(10, content="just a description"))
        assert parsed.description == ""
        assert parsed.embedded_files == []

    def test_deleted_and_archived(self) -> None:
        assert AnnouncementParser().parse(event(10, content={"deleted": True})).deleted
        assert AnnouncementParser().parse(event(10, content={"archived": True})).deleted
        assert not AnnouncementParser().parse(event(10)).deleted

    def test_entity_mismatch_is_corrupted(self) -> None:
        with pytest.raises(CorruptedError) as exc_info:
            AnnouncementParser().parse(event(10, content={"entity": npub_encode(OTHER)}))
        assert exc_info.value.code == "CORRUPTED"

    def test_matching_entity_is_accepted(self) -> None:
        parsed = AnnouncementParser().parse(event(10, content={"entity": npub_encode(OWNER), "ownerPubkey": OWNER}))
        assert parsed.owner_key == OWNER


class TestContributors:
    def test_owner_is_synthesized_first(self) -> None:
        result = normalize_contributors([Contributor(key=OTHER, weight=10)], OWNER)
        assert result[0] == Contributor(key=OWNER, weight=100, role=ContributorRole.OWNER)
        assert result[1].key == OTHER

    def test_other_owner_claims_are_demoted(self) -> None:
        result = normalize_contributors(
            [Contributor(key=OTHER, weight=100, role=ContributorRole.OWNER)], OWNER
        )
        assert [c for c in result if c.is_owner] == [result[0]]
        assert result[1].role is ContributorRole.MAINTAINER
        assert result[1].weight == 99

    def test_duplicates_and_anonymous_entries_are_dropped(self) -> None:
        result = normalize_contributors(
            [
                Contributor(key=OTHER, weight=10),
                Contributor(key=OTHER.upper(), weight=20),
                Contributor(key=None, login="Octocat"),
                Contributor(key=None, login="octocat"),
                Contributor(key=None),
            ],
            OWNER,
        )
        assert len(result) == 3
        assert result[1].weight == 10

    @given(
        weights=st.lists(st.integers(min_value=0, max_value=100), max_size=6),
    )
    @settings(max_examples=100)
    def test_property_exactly_one_owner(self, weights: list[int]) -> None:
        """
        Property: after normalization the announcing key is the only owner.
        """
        contributors = [
            Contributor(key=make_key(f"c{i}"), weight=w, role=ContributorRole.from_weight(w))
            for i, w in enumerate(weights)
        ]
        result = normalize_contributors(contributors, OWNER)
        owners = [c for c in result if c.role is ContributorRole.OWNER or c.weight >= 100]
        assert owners == [result[0]]
        assert result[0].key == OWNER


# ============================================================================
# Relay queries
# ============================================================================


def fast(config: ResolverConfig, **changes) -> ResolverConfig:
    return dataclasses.replace(config, **changes)


class TestEventResolver:
    @pytest.mark.asyncio
    async def test_newest_record_across_relays(
        self, mock_relay_pool: MockRelayPool, fast_config: ResolverConfig
    ) -> None:
        mock_relay_pool.add_event(
            "wss://relay.ngit.dev",
            make_announcement_event(OWNER, "demo", created_at=100, clone=["https://github.com/a/old"]),
        )
        mock_relay_pool.add_event(
            "wss://relay.damus.io",
            make_announcement_event(OWNER, "demo", created_at=150, clone=["https://github.com/a/new"]),
            delay=0.1,
        )

        announcement = await EventResolver(mock_relay_pool, config=fast_config).resolve(OWNER, "demo")

        assert announcement.created_at == 150
        assert announcement.clone_locations == ["https://github.com/a/new"]
        assert mock_relay_pool.open_subscriptions == 0

    @pytest.mark.asyncio
    async def test_grace_window_bounds_waiting(
        self, mock_relay_pool: MockRelayPool, fast_config: ResolverConfig
    ) -> None:
        mock_relay_pool.add_event("wss://relay.ngit.dev", make_announcement_event(OWNER, "demo", created_at=100))
        mock_relay_pool.add_event(
            "wss://relay.damus.io", make_announcement_event(OWNER, "demo", created_at=150), delay=1.5
        )

        announcement = await EventResolver(mock_relay_pool, config=fast_config).resolve(OWNER, "demo")

        assert announcement.created_at == 100

    @pytest.mark.asyncio
    async def test_not_found_after_every_relay_finished(
        self, mock_relay_pool: MockRelayPool, fast_config: ResolverConfig
    ) -> None:
        with pytest.raises(NotFoundError):
            await EventResolver(mock_relay_pool, config=fast_config).resolve(OWNER, "demo")
        assert mock_relay_pool.call_count("unsubscribe") == 1

    @pytest.mark.asyncio
    async def test_hung_relays_stop_at_timeout(
        self, mock_relay_pool: MockRelayPool, fast_config: ResolverConfig
    ) -> None:
        for relay in fast_config.relays:
            mock_relay_pool.configure_relay(relay, send_eose=False)
        config = fast(fast_config, relay_timeout=0.3)

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(NotFoundError):
            await EventResolver(mock_relay_pool, config=config).resolve(OWNER, "demo")

        assert loop.time() - started < 1.0

    @pytest.mark.asyncio
    async def test_corrupted_newest_record(
        self, mock_relay_pool: MockRelayPool, fast_config: ResolverConfig
    ) -> None:
        mock_relay_pool.add_event(
            "wss://relay.ngit.dev",
            make_announcement_event(OWNER, "demo", created_at=100, content={"ownerPubkey": OTHER}),
        )

        with pytest.raises(CorruptedError):
            await EventResolver(mock_relay_pool, config=fast_config).resolve(OWNER, "demo")

    @pytest.mark.asyncio
    async def test_malformed_events_are_skipped(
        self, mock_relay_pool: MockRelayPool, fast_config: ResolverConfig
    ) -> None:
        mock_relay_pool.add_event("wss://relay.ngit.dev", {"pubkey": OWNER, "kind": 30617, "tags": [["d", "demo"]]})
        mock_relay_pool.add_event("wss://relay.ngit.dev", make_announcement_event(OWNER, "demo", created_at=7))

        announcement = await EventResolver(mock_relay_pool, config=fast_config).resolve(OWNER, "demo")

        assert announcement.created_at == 7

    @pytest.mark.asyncio
    async def test_resolution_records_activity(
        self, mock_relay_pool: MockRelayPool, fast_config: ResolverConfig
    ) -> None:
        cache = RepositoryCache()
        mock_relay_pool.add_event("wss://relay.ngit.dev", make_announcement_event(OWNER, "demo", created_at=7))

        await EventResolver(mock_relay_pool, cache, fast_config).resolve(OWNER, "demo")

        assert cache.activity_keys() == [OWNER]

    def test_relays_for_merges_cached_relays(self, fast_config: ResolverConfig) -> None:
        cache = RepositoryCache()
        cache.put_repository(
            StoredRepository(owner_key=OWNER, repo_name="demo", relay_list=["wss://git.example.org", "wss://nos.lol"])
        )
        resolver = EventResolver(MockRelayPool(), cache, fast_config)

        relays = resolver.relays_for(OWNER, "demo", ["relay.extra.io"])
        assert relays == [
            "wss://relay.ngit.dev",
            "wss://git.example.org",
            "wss://relay.damus.io",
            "wss://nos.lol",
            "wss://relay.extra.io",
        ]

    @pytest.mark.asyncio
    async def test_query_filter(self, mock_relay_pool: MockRelayPool, fast_config: ResolverConfig) -> None:
        with pytest.raises(NotFoundError):
            await EventResolver(mock_relay_pool, config=fast_config).resolve(OWNER, "demo")

        filters, relays = mock_relay_pool.get_calls("subscribe")[0].args
        assert filters == [{"kinds": [30617, 51], "#d": ["demo"], "authors": [OWNER]}]
        assert relays == ["wss://relay.ngit.dev", "wss://relay.damus.io"]

    @pytest.mark.asyncio
    async def test_find_owner_by_prefix(self, mock_relay_pool: MockRelayPool, fast_config: ResolverConfig) -> None:
        mock_relay_pool.add_event("wss://relay.damus.io", make_announcement_event(OTHER, "demo", created_at=7))
        mock_relay_pool.add_event("wss://relay.damus.io", make_announcement_event(OWNER, "demo", created_at=8))

        owner = await EventResolver(mock_relay_pool, config=fast_config).find_owner_by_prefix(OWNER[:8], "demo")

        assert owner == OWNER
