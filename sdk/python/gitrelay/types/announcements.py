"""Repository announcement data models."""

from dataclasses import dataclass, field
from enum import Enum

from gitrelay.types.files import FileEntry


class ContributorRole(str, Enum):
    """Contributor role within a repository."""

    OWNER = "owner"
    MAINTAINER = "maintainer"
    CONTRIBUTOR = "contributor"

    @classmethod
    def from_weight(cls, weight: int) -> "ContributorRole":
        """Role implied by a weight when none is stated."""
        if weight >= 100:
            return cls.OWNER
        if weight >= 50:
            return cls.MAINTAINER
        return cls.CONTRIBUTOR

    @classmethod
    def parse(cls, value: object) -> "ContributorRole | None":
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass
class Contributor:
    """Repository contributor."""

    key: str | None
    display_name: str | None = None
    avatar_url: str | None = None
    weight: int = 0
    role: ContributorRole = ContributorRole.CONTRIBUTOR
    login: str | None = None  # external-host login handle

    @property
    def is_owner(self) -> bool:
        return self.weight == 100 and self.role is ContributorRole.OWNER


@dataclass
class RepositoryAnnouncement:
    """
    Reconciled view of a repository's metadata.

    Always built from a single record: the one with the highest
    ``created_at`` (ties broken by the greatest event id).
    """

    repo_name: str
    owner_key: str
    event_id: str
    created_at: int
    description: str = ""
    clone_locations: list[str] = field(default_factory=list)
    relay_list: list[str] = field(default_factory=list)
    source_mirror: str | None = None
    forked_from: str | None = None
    contributors: list[Contributor] = field(default_factory=list)
    web: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    default_branch: str | None = None
    embedded_files: list[FileEntry] = field(default_factory=list)
    deleted: bool = False
    kind: int = 30617

    @property
    def owner(self) -> Contributor | None:
        for contributor in self.contributors:
            if contributor.is_owner:
                return contributor
        return None
