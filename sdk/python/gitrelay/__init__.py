"""gitrelay - Resolve relay-announced git repositories into browsable trees."""

from gitrelay.announcements import AnnouncementParser, AnnouncementReconciler, EventResolver
from gitrelay.arbiter import ArbiterDecision, LocalPrecedenceArbiter
from gitrelay.backends import (
    BackendRouter,
    GitBackend,
    GiteaBackend,
    GitHubBackend,
    GitLabBackend,
    MirrorBridgeBackend,
)
from gitrelay.bech32 import npub_decode, npub_encode
from gitrelay.cache import KeyValueStore, MemoryStore, RepositoryCache
from gitrelay.config import ResolverConfig
from gitrelay.content import FileContentResolver
from gitrelay.exceptions import (
    ConfigurationError,
    CorruptedError,
    DecodeError,
    GitRelayError,
    NotFoundError,
    QuotaExceededError,
    RateLimitedError,
    ServerError,
    SourceUnavailableError,
)
from gitrelay.identity import IdentityResolver
from gitrelay.logging import configure_logging, get_logger
from gitrelay.relays import RelayPool
from gitrelay.resolver import AsyncRepoResolver, RepositoryView
from gitrelay.sources import SourceExpander, parse_git_source
from gitrelay.transport import AsyncHTTPTransport, RetryConfig
from gitrelay.tree import MultiSourceTreeFetcher, TreeFetchResult
from gitrelay.types import (
    FetchState,
    FetchStatus,
    FileContent,
    FileEntry,
    RepositoryAnnouncement,
    RepositoryIdentity,
    SourceCandidate,
    SourceKind,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Main Resolver
    "AsyncRepoResolver",
    "RepositoryView",
    "ResolverConfig",
    # Components
    "IdentityResolver",
    "EventResolver",
    "AnnouncementParser",
    "AnnouncementReconciler",
    "SourceExpander",
    "parse_git_source",
    "MultiSourceTreeFetcher",
    "TreeFetchResult",
    "FileContentResolver",
    "LocalPrecedenceArbiter",
    "ArbiterDecision",
    # Relays
    "RelayPool",
    # Backends
    "GitBackend",
    "BackendRouter",
    "GitHubBackend",
    "GitLabBackend",
    "GiteaBackend",
    "MirrorBridgeBackend",
    # Storage
    "KeyValueStore",
    "MemoryStore",
    "RepositoryCache",
    # Keys
    "npub_encode",
    "npub_decode",
    # Types
    "FetchState",
    "FetchStatus",
    "FileContent",
    "FileEntry",
    "RepositoryAnnouncement",
    "RepositoryIdentity",
    "SourceCandidate",
    "SourceKind",
    # Exceptions
    "GitRelayError",
    "ConfigurationError",
    "DecodeError",
    "NotFoundError",
    "SourceUnavailableError",
    "RateLimitedError",
    "ServerError",
    "QuotaExceededError",
    "CorruptedError",
    # Transport
    "AsyncHTTPTransport",
    "RetryConfig",
    # Logging
    "configure_logging",
    "get_logger",
]
