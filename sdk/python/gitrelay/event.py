"""
Relay event model.

Relays hand back loosely-typed JSON objects. ``RelayEvent.from_dict``
turns one into a typed record without ever raising on odd shapes: missing
fields default, malformed tags are skipped.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from gitrelay.serialize import compute_event_id

KIND_REPOSITORY_LEGACY = 51
KIND_REPOSITORY_ANNOUNCEMENT = 30617
ANNOUNCEMENT_KINDS = (KIND_REPOSITORY_ANNOUNCEMENT, KIND_REPOSITORY_LEGACY)

HEX_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


def is_hex_key(value: Any) -> bool:
    """Return True if value is a 64-character hex string."""
    return isinstance(value, str) and bool(HEX_KEY_PATTERN.match(value))


@dataclass
class RelayEvent:
    """A signed event as delivered by a relay."""

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: list[list[str]] = field(default_factory=list)
    content: str = ""
    sig: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "RelayEvent | None":
        """
        Build an event from relay JSON.

        Returns:
            RelayEvent, or None if the object lacks a usable id, author,
            timestamp or kind
        """
        if not isinstance(data, dict):
            return None

        event_id = data.get("id")
        pubkey = data.get("pubkey")
        created_at = data.get("created_at")
        kind = data.get("kind")
        if not isinstance(event_id, str) or not is_hex_key(pubkey):
            return None
        if isinstance(created_at, bool) or not isinstance(created_at, int):
            return None
        if isinstance(kind, bool) or not isinstance(kind, int):
            return None

        tags: list[list[str]] = []
        raw_tags = data.get("tags")
        if isinstance(raw_tags, list):
            for tag in raw_tags:
                if isinstance(tag, list) and tag and all(isinstance(v, str) for v in tag):
                    tags.append(list(tag))

        content = data.get("content")
        sig = data.get("sig")
        return cls(
            id=event_id.lower(),
            pubkey=pubkey.lower(),
            created_at=created_at,
            kind=kind,
            tags=tags,
            content=content if isinstance(content, str) else "",
            sig=sig if isinstance(sig, str) else "",
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to relay JSON."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def compute_id(self) -> str:
        """Recompute the id from the event's fields."""
        return compute_event_id(self.pubkey, self.created_at, self.kind, self.tags, self.content)

    def has_valid_id(self) -> bool:
        """Return True if the stated id matches the event's fields."""
        return self.id == self.compute_id()

    def tag_values(self, name: str) -> list[str]:
        """First value of every tag named ``name``."""
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]

    def first_tag(self, name: str) -> str | None:
        values = self.tag_values(name)
        return values[0] if values else None
