"""
Resolution context and in-flight round registry.

Components receive an explicit ``ResolutionContext`` rather than reading
shared globals. ``InflightRegistry`` lets a second request for the same
``(owner, repo, branch)`` join the round already running.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from gitrelay.logging import get_logger, short_key
from gitrelay.types.identity import RepositoryIdentity

logger = get_logger()

RoundKey = tuple[str, str, str]


@dataclass(frozen=True)
class ResolutionContext:
    """What one resolution round is resolving."""

    identity: RepositoryIdentity
    owner_key: str
    repo_name: str
    branch: str
    round_id: int

    @property
    def key(self) -> RoundKey:
        return (self.owner_key, self.repo_name, self.branch)


class InflightRegistry:
    """Tracks running resolution tasks keyed by (owner, repo, branch)."""

    def __init__(self) -> None:
        self._tasks: dict[RoundKey, asyncio.Task[Any]] = {}
        self._last_round_id = 0

    def next_round_id(self) -> int:
        """Millisecond-based id, strictly increasing; later rounds win cache writes."""
        self._last_round_id = max(self._last_round_id + 1, time.time_ns() // 1_000_000)
        return self._last_round_id

    def get(self, key: RoundKey) -> asyncio.Task[Any] | None:
        task = self._tasks.get(key)
        if task is not None and task.done():
            return None
        return task

    def register(self, key: RoundKey, task: asyncio.Task[Any]) -> None:
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._release(k, t))

    def _release(self, key: RoundKey, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    def cancel(self, key: RoundKey) -> bool:
        """
        Cancel the in-flight round for ``key``.

        Returns:
            True if a running round was cancelled
        """
        task = self.get(key)
        if task is None:
            return False
        logger.info("Cancelling round for %s/%s@%s", short_key(key[0]), key[1], key[2])
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)

    def __len__(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())
