"""
Pytest fixtures for gitrelay testing.

Provides keys, signed announcement events, a mock relay pool, a mock
backend and stores for testing code that resolves repositories.
"""

import hashlib
import json
import time
from collections.abc import Generator
from typing import Any

import pytest

from gitrelay.cache import MemoryStore, RepositoryCache
from gitrelay.config import ResolverConfig
from gitrelay.event import KIND_REPOSITORY_ANNOUNCEMENT
from gitrelay.serialize import compute_event_id
from gitrelay.sources import parse_git_source
from gitrelay.testing.mock import MockBackend, MockRelayPool
from gitrelay.types.announcements import Contributor, ContributorRole, RepositoryAnnouncement
from gitrelay.types.sources import SourceCandidate, SourceKind


# ============================================================================
# Helper Functions
# ============================================================================


def make_key(seed: str) -> str:
    """Deterministic 64-hex key derived from ``seed``."""
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()


def make_announcement_event(
    owner_key: str,
    repo_name: str,
    created_at: int | None = None,
    clone: list[str] | None = None,
    relays: list[str] | None = None,
    content: str | dict[str, Any] = "",
    tags: list[list[str]] | None = None,
    kind: int = KIND_REPOSITORY_ANNOUNCEMENT,
) -> dict[str, Any]:
    """
    Build a raw announcement event with a correct id.

    Args:
        owner_key: Author key
        repo_name: ``d`` tag value
        created_at: Timestamp (default: now)
        clone: Values for a ``clone`` tag
        relays: Values for a ``relays`` tag
        content: Content string, or a payload dict serialized to JSON
        tags: Extra tags appended after the generated ones
        kind: Event kind

    Returns:
        Event as a relay would deliver it (unsigned)
    """
    event_tags: list[list[str]] = [["d", repo_name], ["name", repo_name]]
    if clone:
        event_tags.append(["clone", *clone])
    if relays:
        event_tags.append(["relays", *relays])
    event_tags.extend(tags or [])

    if isinstance(content, dict):
        content = json.dumps(content)
    created_at = int(time.time()) if created_at is None else created_at
    return {
        "id": compute_event_id(owner_key, created_at, kind, event_tags, content),
        "pubkey": owner_key,
        "created_at": created_at,
        "kind": kind,
        "tags": event_tags,
        "content": content,
        "sig": "",
    }


def create_mock_candidate(url: str = "https://github.com/alice/demo", **kwargs: Any) -> SourceCandidate:
    """
    Create a SourceCandidate for ``url`` with optional overrides.

    Example:
        ```python
        candidate = create_mock_candidate("https://relay.ngit.dev/npub1.../demo.git", priority=2)
        ```
    """
    candidate = parse_git_source(url)
    if candidate is None:
        candidate = SourceCandidate(url=url, kind=SourceKind.UNKNOWN)
    fields = {
        "url": candidate.url,
        "kind": candidate.kind,
        "priority": candidate.priority,
        "host": candidate.host,
        "service": candidate.service,
        "owner": candidate.owner,
        "repo": candidate.repo,
        "npub": candidate.npub,
        "explicit": candidate.explicit,
    }
    fields.update(kwargs)
    return SourceCandidate(**fields)


def create_mock_announcement(
    owner_key: str | None = None,
    repo_name: str = "demo",
    **kwargs: Any,
) -> RepositoryAnnouncement:
    """
    Create a RepositoryAnnouncement with sensible defaults.

    Example:
        ```python
        announcement = create_mock_announcement(clone_locations=["https://github.com/a/b"])
        ```
    """
    owner_key = owner_key or make_key("owner")
    defaults: dict[str, Any] = {
        "repo_name": repo_name,
        "owner_key": owner_key,
        "event_id": make_key(f"{owner_key}:{repo_name}"),
        "created_at": 1_700_000_000,
        "contributors": [Contributor(key=owner_key, weight=100, role=ContributorRole.OWNER)],
    }
    defaults.update(kwargs)
    return RepositoryAnnouncement(**defaults)


# ============================================================================
# Key Fixtures
# ============================================================================


@pytest.fixture
def owner_key() -> str:
    """Provide a deterministic owner key."""
    return make_key("owner")


@pytest.fixture
def other_key() -> str:
    """Provide a second, unrelated key."""
    return make_key("someone-else")


@pytest.fixture
def repo_name() -> str:
    """Provide a test repository name."""
    return "demo"


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_relay_pool() -> Generator[MockRelayPool, None, None]:
    """
    Provide a MockRelayPool for testing.

    Example:
        ```python
        def test_resolve(mock_relay_pool, owner_key):
            mock_relay_pool.add_event("wss://relay.ngit.dev", make_announcement_event(owner_key, "demo"))
            ...
            assert mock_relay_pool.was_called("subscribe")
        ```
    """
    pool = MockRelayPool()
    yield pool
    pool.reset()


@pytest.fixture
def mock_backend() -> Generator[MockBackend, None, None]:
    """Provide a MockBackend with nothing configured."""
    backend = MockBackend()
    yield backend
    backend.reset()


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def memory_store() -> MemoryStore:
    """Provide an empty in-memory store without a quota."""
    return MemoryStore()


@pytest.fixture
def repository_cache(memory_store: MemoryStore) -> RepositoryCache:
    """Provide a RepositoryCache over ``memory_store``."""
    return RepositoryCache(memory_store)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def fast_config() -> ResolverConfig:
    """
    Provide a ResolverConfig with short timeouts and two relays.

    Keeps relay and fetch tests well under a second.
    """
    return ResolverConfig(
        relays=["wss://relay.ngit.dev", "wss://relay.damus.io"],
        source_timeout=1.0,
        race_timeout=2.0,
        event_grace=0.2,
        eose_grace=0.05,
        relay_timeout=2.0,
        handle_timeout=1.0,
    )


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def sample_announcement_event(owner_key: str, repo_name: str) -> dict[str, Any]:
    """Provide an announcement event with a GitHub clone location."""
    return make_announcement_event(
        owner_key,
        repo_name,
        created_at=1_700_000_000,
        clone=[f"https://github.com/alice/{repo_name}"],
        relays=["wss://relay.ngit.dev"],
    )


@pytest.fixture
def sample_announcement(owner_key: str, repo_name: str) -> RepositoryAnnouncement:
    """Provide a parsed announcement with one external clone location."""
    return create_mock_announcement(
        owner_key,
        repo_name,
        clone_locations=[f"https://github.com/alice/{repo_name}"],
    )
