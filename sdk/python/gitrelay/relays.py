"""
Relay query seam and relay ordering.

The resolver never talks to relays directly: it hands filters and a relay
list to a ``RelayPool`` and receives events and end-of-stream markers via
callbacks. Concrete pools (websocket clients) live outside this package.
"""

import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import Any
from urllib.parse import urlparse

from gitrelay.event import ANNOUNCEMENT_KINDS

EventCallback = Callable[[dict[str, Any], str], None]
EoseCallback = Callable[[str], None]
Unsubscribe = Callable[[], None]

_GIT_HOST_PATTERN = re.compile(r"^git(-\d+)?\.")


class RelayPool(ABC):
    """
    Abstract relay pool.

    Implement this to connect the resolver to real relays.

    Example:
        ```python
        class WebsocketPool(RelayPool):
            def subscribe(self, filters, relays, on_event, on_eose):
                ...
                return lambda: self._close_subscription(sub_id)
        ```
    """

    @abstractmethod
    def subscribe(
        self,
        filters: list[dict[str, Any]],
        relays: list[str],
        on_event: EventCallback,
        on_eose: EoseCallback,
    ) -> Unsubscribe:
        """
        Open a subscription on every relay in ``relays``.

        ``on_event(event, relay_url)`` receives raw event JSON objects.
        ``on_eose(relay_url)`` is called once per relay when it has sent its
        stored events, or when the relay failed or timed out. Callbacks may
        run on another thread.

        Returns:
            Callable that closes the subscription
        """
        pass

    async def close(self) -> None:
        """Release pool resources. Default implementation does nothing."""
        return None


def normalize_relay_url(url: str) -> str | None:
    """
    Normalize a relay URL.

    Adds ``wss://`` when no scheme is given and strips a trailing slash.

    Returns:
        Normalized URL, or None for empty or non-websocket input
    """
    url = url.strip()
    if not url:
        return None
    if "://" not in url:
        url = f"wss://{url}"
    if not url.startswith(("wss://", "ws://")):
        return None
    return url.rstrip("/")


def relay_host(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def is_mirror_host(host: str, mirror_hosts: Iterable[str]) -> bool:
    """True for known decentralized-mirror hosts and ``git.`` / ``git-NN.`` hosts."""
    host = host.lower()
    if not host:
        return False
    if host in {h.lower() for h in mirror_hosts}:
        return True
    return bool(_GIT_HOST_PATTERN.match(host))


def is_git_capable_relay(url: str, mirror_hosts: Iterable[str]) -> bool:
    return is_mirror_host(relay_host(url), mirror_hosts)


def prioritize_relays(
    relays: Iterable[str],
    mirror_hosts: Iterable[str],
    max_relays: int,
) -> list[str]:
    """
    Order relays git-capable first, deduplicated, capped at ``max_relays``.

    Order is otherwise preserved within each group.
    """
    mirror_hosts = list(mirror_hosts)
    seen: set[str] = set()
    git_relays: list[str] = []
    other_relays: list[str] = []
    for raw in relays:
        url = normalize_relay_url(raw)
        if url is None or url.lower() in seen:
            continue
        seen.add(url.lower())
        if is_git_capable_relay(url, mirror_hosts):
            git_relays.append(url)
        else:
            other_relays.append(url)
    return (git_relays + other_relays)[:max_relays]


def announcement_filter(owner_key: str | None, repo_name: str) -> dict[str, Any]:
    """
    Build the subscription filter for a repository's announcements.

    Args:
        owner_key: Author key; None builds a broad query across all authors
        repo_name: Repository identifier (``d`` tag)
    """
    query: dict[str, Any] = {"kinds": list(ANNOUNCEMENT_KINDS), "#d": [repo_name]}
    if owner_key is not None:
        query["authors"] = [owner_key]
    return query


__all__ = [
    "RelayPool",
    "EventCallback",
    "EoseCallback",
    "Unsubscribe",
    "normalize_relay_url",
    "relay_host",
    "is_mirror_host",
    "is_git_capable_relay",
    "prioritize_relays",
    "announcement_filter",
]
