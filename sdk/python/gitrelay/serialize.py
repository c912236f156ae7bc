"""
Deterministic event serialization.

An event id is the SHA-256 of the compact JSON array
``[0, pubkey, created_at, kind, tags, content]``. Relays and clients must
agree on every byte, so this module writes the array itself instead of
relying on ``json.dumps`` escaping rules.
"""

import hashlib
from typing import Any


class EventSerializer:
    """
    Serializer producing the canonical byte form of an event.

    Rules:
    1. No whitespace between tokens
    2. Strings escape only ``"``, ``\\``, newline, carriage return, tab,
       backspace and form feed; everything else is written verbatim
    3. Only integers, strings and nested lists are accepted
    """

    def serialize(
        self,
        pubkey: str,
        created_at: int,
        kind: int,
        tags: list[list[str]],
        content: str,
    ) -> str:
        """
        Serialize event fields to the canonical JSON array.

        Returns:
            Canonical JSON string
        """
        return self._serialize_value([0, pubkey, created_at, kind, tags, content])

    def _serialize_value(self, value: Any) -> str:
        if isinstance(value, bool):
            raise TypeError("booleans are not part of the event serialization")
        if isinstance(value, str):
            return self._serialize_string(value)
        if isinstance(value, int):
            return str(value)
        if isinstance(value, (list, tuple)):
            return "[" + ",".join(self._serialize_value(item) for item in value) + "]"
        raise TypeError(f"Cannot serialize type: {type(value).__name__}")

    def _serialize_string(self, s: str) -> str:
        result = ['"']
        for char in s:
            if char == '"':
                result.append('\\"')
            elif char == '\\':
                result.append('\\\\')
            elif char == '\n':
                result.append('\\n')
            elif char == '\r':
                result.append('\\r')
            elif char == '\t':
                result.append('\\t')
            elif char == '\b':
                result.append('\\b')
            elif char == '\f':
                result.append('\\f')
            else:
                result.append(char)
        result.append('"')
        return ''.join(result)


# Module-level convenience functions
_serializer = EventSerializer()


def serialize_event(
    pubkey: str, created_at: int, kind: int, tags: list[list[str]], content: str
) -> str:
    """Serialize event fields with a module-level EventSerializer."""
    return _serializer.serialize(pubkey, created_at, kind, tags, content)


def compute_event_id(
    pubkey: str, created_at: int, kind: int, tags: list[list[str]], content: str
) -> str:
    """
    Compute the event id for the given fields.

    Returns:
        Hex-encoded SHA-256 of the canonical serialization
    """
    serialized = serialize_event(pubkey, created_at, kind, tags, content)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()
