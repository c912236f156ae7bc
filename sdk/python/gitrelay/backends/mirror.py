"""
Mirror bridge backend.

Decentralized mirrors only speak the git wire protocol. A bridge service
keeps local clones keyed by owner key and repository name and serves their
trees and blobs over a small JSON API:

- ``GET /api/nostr/repo/files?ownerPubkey&repo&branch`` returns
  ``{"files": [...], "branch": ...}``
- ``GET /api/nostr/repo/file-content?ownerPubkey&repo&path&branch`` returns
  ``{"content": ..., "isBinary": bool}`` with base64 content when binary
- ``POST /api/nostr/repo/clone`` asks the bridge to clone a mirror URL
"""

import base64
import binascii

from gitrelay.backends.base import GitBackend, add_parent_dirs
from gitrelay.bech32 import npub_decode
from gitrelay.exceptions import DecodeError, GitRelayError, NotFoundError, SourceUnavailableError
from gitrelay.logging import get_logger, short_key
from gitrelay.transport import AsyncHTTPTransport
from gitrelay.types.files import FileEntry
from gitrelay.types.sources import SourceCandidate, SourceKind

logger = get_logger("fetch")


class MirrorBridgeBackend(GitBackend):
    """
    Serves mirror candidates through the bridge's local clones.

    The bridge stores repositories under the announcing owner's key, so the
    resolved owner key is preferred over the key in the clone URL.
    """

    name = "mirror"

    def __init__(self, http: AsyncHTTPTransport, trigger_clone: bool = True) -> None:
        """
        Args:
            http: Transport whose base URL is the bridge
            trigger_clone: Ask the bridge to clone mirrors it does not hold yet
        """
        self.http = http
        self.trigger_clone = trigger_clone
        self._clone_requested: set[tuple[str, str]] = set()

    def owner_for(self, candidate: SourceCandidate, owner_key: str | None) -> str:
        if owner_key:
            return owner_key
        if candidate.npub:
            try:
                return npub_decode(candidate.npub)
            except DecodeError as e:
                raise SourceUnavailableError("UNSUPPORTED", f"Bad npub in {candidate.url}: {e.message}") from e
        raise SourceUnavailableError("UNSUPPORTED", f"No owner key for {candidate.url}")

    def clone_key(self, candidate: SourceCandidate, owner_key: str | None) -> tuple[str, str]:
        """The (owner key, repository) pair the bridge stores ``candidate`` under."""
        return self.owner_for(candidate, owner_key), self._repo_name(candidate)

    async def fetch_tree(
        self,
        candidate: SourceCandidate,
        branch: str,
        owner_key: str | None = None,
    ) -> list[FileEntry]:
        owner = self.owner_for(candidate, owner_key)
        repo = self._repo_name(candidate)
        try:
            data = await self.http.get_json(
                "/api/nostr/repo/files",
                params={"ownerPubkey": owner, "repo": repo, "branch": branch, "cloneUrl": candidate.url},
            )
        except NotFoundError:
            await self._request_clone(candidate, owner, repo)
            raise

        files = data.get("files") if isinstance(data, dict) else None
        return add_parent_dirs(
            entry for entry in (FileEntry.from_dict(item) for item in files or [])
            if entry is not None
        )

    async def fetch_file(
        self,
        candidate: SourceCandidate,
        path: str,
        branch: str,
        owner_key: str | None = None,
    ) -> bytes | str:
        owner, repo = self.clone_key(candidate, owner_key)
        return await self.read_cached(owner, repo, path, branch)

    async def read_cached(self, owner_key: str, repo_name: str, path: str, branch: str) -> bytes | str:
        """
        Read a file from the bridge's clone of ``owner_key/repo_name``.

        Returns:
            Text as ``str``, binary content as ``bytes``

        Raises:
            NotFoundError: If the bridge has no such file
        """
        data = await self.http.get_json(
            "/api/nostr/repo/file-content",
            params={"ownerPubkey": owner_key, "repo": repo_name, "path": path, "branch": branch},
        )
        if not isinstance(data, dict) or not isinstance(data.get("content"), str):
            raise NotFoundError("NOT_FOUND", f"Bridge returned no content for {path}")

        content = data["content"]
        if data.get("isBinary") is True:
            try:
                return base64.b64decode(content, validate=False)
            except (binascii.Error, ValueError) as e:
                raise SourceUnavailableError("INVALID_RESPONSE", f"Bad base64 for {path}") from e
        return content

    async def close(self) -> None:
        await self.http.close()

    def _repo_name(self, candidate: SourceCandidate) -> str:
        if not candidate.repo:
            raise SourceUnavailableError("UNSUPPORTED", f"No repository name in {candidate.url}")
        return candidate.repo

    async def _request_clone(self, candidate: SourceCandidate, owner_key: str, repo_name: str) -> None:
        """Ask the bridge to clone a mirror it does not hold; once per repository."""
        if not self.trigger_clone or candidate.kind is not SourceKind.MIRROR:
            return
        if (owner_key, repo_name) in self._clone_requested:
            return
        self._clone_requested.add((owner_key, repo_name))
        try:
            await self.http.post_json(
                "/api/nostr/repo/clone",
                {"cloneUrl": candidate.url, "ownerPubkey": owner_key, "repo": repo_name},
            )
        except GitRelayError as e:
            logger.info("Bridge clone request for %s failed: %s", candidate.url, e)
            return
        logger.info("Bridge clone requested for %s/%s", short_key(owner_key), repo_name)
