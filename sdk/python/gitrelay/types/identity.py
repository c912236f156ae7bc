"""Identity-related data models."""

from dataclasses import dataclass
from enum import Enum


class EntityKind(str, Enum):
    """Shape of a raw route entity."""

    HEX_KEY = "hex_key"
    NPUB = "npub"
    PREFIX = "prefix"
    HANDLE = "handle"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RepositoryIdentity:
    """A route identity and the owner key it resolved to (None if unresolved)."""

    raw_entity: str
    repo_name: str
    owner_key: str | None
    kind: EntityKind = EntityKind.UNKNOWN

    @property
    def is_resolved(self) -> bool:
        return self.owner_key is not None
