"""
Git backend interface and dispatch.

A backend lists a branch's flat file tree and reads single files for one
kind of hosting. ``BackendRouter`` picks the backend for a candidate.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

from gitrelay.config import FALLBACK_BRANCHES
from gitrelay.exceptions import NotFoundError, SourceUnavailableError
from gitrelay.logging import get_logger
from gitrelay.transport import AsyncHTTPTransport
from gitrelay.types.files import EntryType, FileEntry
from gitrelay.types.sources import SourceCandidate, SourceKind

logger = get_logger("fetch")

T = TypeVar("T")


class GitBackend(ABC):
    """Abstract git-hosting backend."""

    name: str = "backend"

    @abstractmethod
    async def fetch_tree(
        self,
        candidate: SourceCandidate,
        branch: str,
        owner_key: str | None = None,
    ) -> list[FileEntry]:
        """
        List every file and directory on ``branch``.

        Raises:
            GitRelayError: If the source cannot serve the tree
        """
        pass

    @abstractmethod
    async def fetch_file(
        self,
        candidate: SourceCandidate,
        path: str,
        branch: str,
        owner_key: str | None = None,
    ) -> bytes | str:
        """
        Read one file. ``str`` means decoded text, ``bytes`` raw content.

        Raises:
            GitRelayError: If the source cannot serve the file
        """
        pass

    async def close(self) -> None:
        return None


def add_parent_dirs(entries: Iterable[FileEntry]) -> list[FileEntry]:
    """
    Add directory entries implied by file paths.

    ``a/b/c.txt`` implies ``a`` and ``a/b``. Existing entries keep their
    order; implied directories are appended.
    """
    result = list(entries)
    known = {entry.path for entry in result}
    for entry in list(result):
        parts = entry.path.split("/")[:-1]
        for depth in range(1, len(parts) + 1):
            parent = "/".join(parts[:depth])
            if parent not in known:
                known.add(parent)
                result.append(FileEntry(path=parent, type=EntryType.DIR))
    return result


def branch_order(*branches: str | None) -> list[str]:
    """Deduplicated branch names followed by the fallback branches."""
    order: list[str] = []
    for branch in (*branches, *FALLBACK_BRANCHES):
        if branch and branch not in order:
            order.append(branch)
    return order


class HostedBackend(GitBackend):
    """
    Base for conventional hosting services addressed by owner/repo.

    Tree listings try the requested branch, then the repository's default
    branch, then ``main`` and ``master``. File reads skip the default-branch
    lookup.
    """

    def __init__(self, http: AsyncHTTPTransport) -> None:
        self.http = http

    async def fetch_tree(
        self,
        candidate: SourceCandidate,
        branch: str,
        owner_key: str | None = None,
    ) -> list[FileEntry]:
        owner, repo = self._require_repo(candidate)

        async def list_tree(b: str) -> list[FileEntry]:
            return await self._list_tree(owner, repo, b)

        try:
            return add_parent_dirs(await list_tree(branch))
        except NotFoundError as e:
            logger.debug("%s: branch %s of %s/%s not found", self.name, branch, owner, repo)
            first_error = e

        default_branch = await self._default_branch(owner, repo)
        remaining = [b for b in branch_order(default_branch) if b != branch]
        if not remaining:
            raise first_error
        return add_parent_dirs(await self._first_branch(remaining, list_tree))

    async def fetch_file(
        self,
        candidate: SourceCandidate,
        path: str,
        branch: str,
        owner_key: str | None = None,
    ) -> bytes | str:
        owner, repo = self._require_repo(candidate)

        async def read(b: str) -> bytes | str:
            return await self._read_file(owner, repo, path, b)

        return await self._first_branch(branch_order(branch), read)

    async def close(self) -> None:
        await self.http.close()

    async def _first_branch(self, branches: list[str], fetch: Callable[[str], Awaitable[T]]) -> T:
        last_error: NotFoundError | None = None
        for branch in branches:
            try:
                return await fetch(branch)
            except NotFoundError as e:
                last_error = e
        raise last_error or NotFoundError("NOT_FOUND", "No branch to try")

    def _require_repo(self, candidate: SourceCandidate) -> tuple[str, str]:
        if not candidate.owner or not candidate.repo:
            raise SourceUnavailableError("UNSUPPORTED", f"Cannot address a repository at {candidate.url}")
        return candidate.owner, candidate.repo

    @abstractmethod
    async def _list_tree(self, owner: str, repo: str, branch: str) -> list[FileEntry]:
        pass

    @abstractmethod
    async def _read_file(self, owner: str, repo: str, path: str, branch: str) -> bytes | str:
        pass

    async def _default_branch(self, owner: str, repo: str) -> str | None:
        """Repository's default branch; None if the service cannot say."""
        return None


class BackendRouter(GitBackend):
    """
    Dispatches each candidate to the backend serving its kind.

    External candidates go to the backend registered for their service;
    mirror and unknown candidates go to the mirror bridge.
    """

    name = "router"

    def __init__(
        self,
        mirror: GitBackend | None = None,
        services: dict[str, GitBackend] | None = None,
    ) -> None:
        self.mirror = mirror
        self.services = dict(services or {})

    def backend_for(self, candidate: SourceCandidate) -> GitBackend | None:
        if candidate.kind is SourceKind.EXTERNAL:
            return self.services.get(candidate.service or "")
        return self.mirror

    def _require_backend(self, candidate: SourceCandidate) -> GitBackend:
        backend = self.backend_for(candidate)
        if backend is None:
            raise SourceUnavailableError("UNSUPPORTED", f"No backend for {candidate.url}")
        return backend

    async def fetch_tree(
        self,
        candidate: SourceCandidate,
        branch: str,
        owner_key: str | None = None,
    ) -> list[FileEntry]:
        return await self._require_backend(candidate).fetch_tree(candidate, branch, owner_key)

    async def fetch_file(
        self,
        candidate: SourceCandidate,
        path: str,
        branch: str,
        owner_key: str | None = None,
    ) -> bytes | str:
        return await self._require_backend(candidate).fetch_file(candidate, path, branch, owner_key)

    async def close(self) -> None:
        backends = [self.mirror, *self.services.values()]
        closed: list[GitBackend] = []
        for backend in backends:
            if backend is not None and not any(backend is c for c in closed):
                closed.append(backend)
                await backend.close()
