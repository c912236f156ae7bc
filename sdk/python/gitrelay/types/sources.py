"""Source candidate and fetch status data models."""

from dataclasses import dataclass, field
from enum import Enum

from gitrelay.types.files import FileEntry


class SourceKind(str, Enum):
    """Kind of git-hosting backend behind a candidate URL."""

    MIRROR = "mirror"  # decentralized mirror / git-capable relay
    EXTERNAL = "external"  # conventional hosting service
    UNKNOWN = "unknown"


class FetchState(str, Enum):
    """Per-candidate fetch state. Transitions only move forward."""

    PENDING = "pending"
    FETCHING = "fetching"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FetchState.SUCCESS, FetchState.FAILED)


_STATE_ORDER = {
    FetchState.PENDING: 0,
    FetchState.FETCHING: 1,
    FetchState.SUCCESS: 2,
    FetchState.FAILED: 2,
}


def state_rank(state: FetchState) -> int:
    """Position of a state in the pending -> fetching -> terminal order."""
    return _STATE_ORDER[state]


@dataclass(frozen=True)
class SourceCandidate:
    """A fetchable git location, ranked by Source Expansion."""

    url: str
    kind: SourceKind
    priority: int = 0
    host: str = ""
    service: str | None = None  # "github", "gitlab", "codeberg" for external kinds
    owner: str | None = None
    repo: str | None = None
    npub: str | None = None
    explicit: bool = True  # False for speculative mirror expansions

    @property
    def display_name(self) -> str:
        return self.host or self.url


@dataclass
class FetchStatus:
    """Status of one candidate within one fetch round."""

    candidate: SourceCandidate
    state: FetchState = FetchState.PENDING
    error: str | None = None
    files: list[FileEntry] | None = None
    fetched_at: float | None = None


@dataclass(frozen=True)
class StatusUpdate:
    """One message on the append-only status channel."""

    index: int
    state: FetchState
    error: str | None = None
    files: tuple[FileEntry, ...] | None = None
    at: float = 0.0
