"""
Multi-source tree fetching.

Every candidate is fetched concurrently. Workers never touch shared state:
they post ``StatusUpdate`` messages to one append-only queue, and a single
coordinator (``StatusAggregator``) applies them. The coordinator alone
decides which source's tree becomes the tree of record, so the outcome does
not depend on how late or duplicated updates interleave.
"""

import asyncio
import dataclasses
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from gitrelay.backends.base import GitBackend
from gitrelay.config import ResolverConfig
from gitrelay.exceptions import (
    GitRelayError,
    NotFoundError,
    RateLimitedError,
    SourceUnavailableError,
)
from gitrelay.logging import get_logger, log_fetch_status
from gitrelay.types.files import FileEntry
from gitrelay.types.sources import FetchState, FetchStatus, SourceCandidate, StatusUpdate, state_rank

logger = get_logger("fetch")

StatusCallback = Callable[[FetchStatus], None]

NO_FILES = "No files from this source"
TIMED_OUT = "Timed out"
CANCELLED = "Cancelled"


def classify_error(error: BaseException) -> str:
    """Short, user-facing reason for a failed source."""
    if isinstance(error, RateLimitedError):
        return "Rate limit exceeded"
    if isinstance(error, NotFoundError):
        return "Repository not found"
    if isinstance(error, SourceUnavailableError):
        if error.code == "FORBIDDEN":
            return "Access forbidden"
        if error.code == "UNSUPPORTED":
            return "Unsupported source"
        return "Server unavailable"
    if isinstance(error, asyncio.TimeoutError):
        return TIMED_OUT
    if isinstance(error, GitRelayError):
        return error.message
    return "Server unavailable"


@dataclass
class TreeFetchResult:
    """Snapshot of a fetch round."""

    files: list[FileEntry] = field(default_factory=list)
    source_of_record: SourceCandidate | None = None
    statuses: list[FetchStatus] = field(default_factory=list)
    successful_sources: list[SourceCandidate] = field(default_factory=list)
    history: list[StatusUpdate] = field(default_factory=list)
    complete: bool = False

    @property
    def has_files(self) -> bool:
        return bool(self.files)


class StatusAggregator:
    """
    Applies status updates for one round.

    Transitions only move forward (pending -> fetching -> success|failed);
    a terminal state is final, so a success is never downgraded and
    duplicate or late updates are ignored.
    """

    def __init__(
        self,
        candidates: list[SourceCandidate],
        branch: str,
        on_status: StatusCallback | None = None,
    ) -> None:
        self.candidates = list(candidates)
        self.branch = branch
        self.on_status = on_status
        self.statuses = [FetchStatus(candidate=c) for c in self.candidates]
        self.history: list[StatusUpdate] = []
        self.record_index: int | None = None
        self.success_order: list[int] = []
        self.record_found = asyncio.Event()
        self.all_done = asyncio.Event()
        if not self.candidates:
            self.all_done.set()

    def apply(self, update: StatusUpdate) -> bool:
        """
        Apply one update.

        Returns:
            True if the update changed the round's state
        """
        if not 0 <= update.index < len(self.statuses):
            return False
        status = self.statuses[update.index]
        if status.state.is_terminal or state_rank(update.state) <= state_rank(status.state):
            return False

        status.state = update.state
        status.error = update.error
        status.fetched_at = update.at
        if update.files is not None:
            status.files = list(update.files)
        self.history.append(update)

        if update.state is FetchState.SUCCESS and status.files:
            self.success_order.append(update.index)
            if self.record_index is None:
                self.record_index = update.index
                self.record_found.set()

        log_fetch_status(
            status.candidate.url,
            update.state.value,
            self.branch,
            error=update.error,
            file_count=len(status.files) if status.files is not None else None,
        )
        self._notify(status)

        if all(s.state.is_terminal for s in self.statuses):
            self.all_done.set()
        return True

    def _notify(self, status: FetchStatus) -> None:
        if self.on_status is None:
            return
        try:
            self.on_status(dataclasses.replace(status))
        except Exception:
            logger.exception("Status callback failed for %s", status.candidate.url)

    async def run(self, queue: "asyncio.Queue[StatusUpdate]") -> None:
        """Consume the queue until every candidate is terminal."""
        while not self.all_done.is_set():
            self.apply(await queue.get())

    def snapshot(self) -> TreeFetchResult:
        record = self.statuses[self.record_index] if self.record_index is not None else None
        return TreeFetchResult(
            files=list(record.files or []) if record is not None else [],
            source_of_record=record.candidate if record is not None else None,
            statuses=[dataclasses.replace(s) for s in self.statuses],
            successful_sources=[self.candidates[i] for i in self.success_order],
            history=list(self.history),
            complete=self.all_done.is_set(),
        )


class TreeFetchRound:
    """
    One concurrent fetch of a branch's tree across all candidates.

    Created by ``MultiSourceTreeFetcher.start``; must be created inside a
    running event loop.
    """

    def __init__(
        self,
        backend: GitBackend,
        candidates: list[SourceCandidate],
        branch: str,
        config: ResolverConfig,
        owner_key: str | None = None,
        on_status: StatusCallback | None = None,
    ) -> None:
        self.backend = backend
        self.branch = branch
        self.config = config
        self.owner_key = owner_key
        self.aggregator = StatusAggregator(candidates, branch, on_status)
        self._queue: asyncio.Queue[StatusUpdate] = asyncio.Queue()
        self._coordinator = asyncio.ensure_future(self.aggregator.run(self._queue))
        self._workers = [
            asyncio.ensure_future(self._fetch_one(index, candidate))
            for index, candidate in enumerate(candidates)
        ]

    @property
    def statuses(self) -> list[FetchStatus]:
        return self.aggregator.statuses

    @property
    def history(self) -> list[StatusUpdate]:
        return self.aggregator.history

    @property
    def done(self) -> bool:
        return self.aggregator.all_done.is_set()

    def _post(self, index: int, state: FetchState, error: str | None = None,
              files: list[FileEntry] | None = None) -> None:
        self._queue.put_nowait(
            StatusUpdate(
                index=index,
                state=state,
                error=error,
                files=tuple(files) if files is not None else None,
                at=time.time(),
            )
        )

    async def _fetch_one(self, index: int, candidate: SourceCandidate) -> None:
        self._post(index, FetchState.FETCHING)
        try:
            files = await asyncio.wait_for(
                self.backend.fetch_tree(candidate, self.branch, self.owner_key),
                timeout=self.config.source_timeout,
            )
        except asyncio.TimeoutError:
            self._post(index, FetchState.FAILED, TIMED_OUT)
            return
        except (GitRelayError, httpx.HTTPError) as e:
            logger.debug("Tree fetch from %s failed: %s", candidate.url, e)
            self._post(index, FetchState.FAILED, classify_error(e))
            return
        except Exception:
            logger.exception("Unexpected error fetching tree from %s", candidate.url)
            self._post(index, FetchState.FAILED, "Server unavailable")
            return

        if not files:
            self._post(index, FetchState.FAILED, NO_FILES)
        else:
            self._post(index, FetchState.SUCCESS, files=files)

    async def first_success(self, timeout: float | None = None) -> TreeFetchResult:
        """
        Wait for the tree of record.

        Returns as soon as a source succeeded with files, every source
        finished, or the race timeout elapsed. Never raises for source
        failures; an empty result means no source had files.
        """
        timeout = self.config.race_timeout if timeout is None else timeout
        waiters = [
            asyncio.ensure_future(self.aggregator.record_found.wait()),
            asyncio.ensure_future(self.aggregator.all_done.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        return self.aggregator.snapshot()

    async def wait_complete(self) -> TreeFetchResult:
        """Wait until every source is terminal."""
        await self.aggregator.all_done.wait()
        return self.aggregator.snapshot()

    def result(self) -> TreeFetchResult:
        return self.aggregator.snapshot()

    def cancel(self) -> None:
        """Cancel outstanding fetches; unfinished sources become failed."""
        for worker in self._workers:
            worker.cancel()
        self._coordinator.cancel()
        for index, status in enumerate(self.aggregator.statuses):
            if not status.state.is_terminal:
                self.aggregator.apply(StatusUpdate(index, FetchState.FAILED, CANCELLED, at=time.time()))


class MultiSourceTreeFetcher:
    """Starts tree fetch rounds against a backend."""

    def __init__(self, backend: GitBackend, config: ResolverConfig | None = None) -> None:
        self.backend = backend
        self.config = config or ResolverConfig()

    def start(
        self,
        candidates: list[SourceCandidate],
        branch: str,
        owner_key: str | None = None,
        on_status: StatusCallback | None = None,
    ) -> TreeFetchRound:
        """
        Start fetching ``branch`` from every candidate.

        Args:
            candidates: Ranked candidates
            branch: Branch to list
            owner_key: Resolved owner key (mirror bridges index by it)
            on_status: Called with a copy of each applied status change

        Returns:
            The running round
        """
        logger.info("Fetching %s from %d sources", branch, len(candidates))
        return TreeFetchRound(self.backend, candidates, branch, self.config, owner_key, on_status)

    async def fetch(
        self,
        candidates: list[SourceCandidate],
        branch: str,
        owner_key: str | None = None,
    ) -> TreeFetchResult:
        """Convenience: start a round and wait for the tree of record."""
        return await self.start(candidates, branch, owner_key).first_success()
