"""
File content resolution.

A file read walks a fixed priority chain and stops at the first hit:
content embedded in the tree, a local pending edit, the mirror bridge's
cached clone, then every source that served the tree followed by the rest
of the candidate list.
"""

import asyncio
import base64
import mimetypes
import os
import re

import httpx

from gitrelay.backends.base import BackendRouter, GitBackend
from gitrelay.backends.mirror import MirrorBridgeBackend
from gitrelay.cache import RepositoryCache
from gitrelay.config import ResolverConfig
from gitrelay.context import ResolutionContext
from gitrelay.exceptions import GitRelayError, NotFoundError
from gitrelay.logging import get_logger, short_key
from gitrelay.tree import TreeFetchResult
from gitrelay.types.files import FileContent, FileEntry, normalize_path
from gitrelay.types.sources import SourceCandidate

logger = get_logger("fetch")

DEFAULT_MIME_TYPE = "application/octet-stream"

# C0 controls other than tab, newline, form feed and carriage return.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0E-\x1F]")

TEXT_EXTENSIONS = frozenset({
    ".c", ".cfg", ".conf", ".cpp", ".cs", ".css", ".csv", ".go", ".h", ".hpp",
    ".html", ".ini", ".java", ".js", ".json", ".jsx", ".kt", ".lock", ".md",
    ".mjs", ".php", ".py", ".rb", ".rs", ".rst", ".sh", ".sql", ".svg",
    ".swift", ".toml", ".ts", ".tsx", ".txt", ".xml", ".yaml", ".yml",
})


def guess_mime_type(path: str) -> str:
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type or DEFAULT_MIME_TYPE


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def is_binary_content(data: bytes, path: str = "") -> bool:
    """
    Decide whether raw bytes should be treated as binary.

    Known text extensions are always text. Otherwise NUL bytes, invalid
    UTF-8 or stray control characters mean binary.
    """
    if os.path.splitext(path)[1].lower() in TEXT_EXTENSIONS:
        return False
    if b"\x00" in data:
        return True
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return True
    return bool(_CONTROL_CHARS.search(text))


def build_content(
    path: str,
    data: bytes | str,
    source: str,
    branch: str | None,
    mime_type: str | None = None,
) -> FileContent:
    """Wrap fetched data as text or as a base64 data URL."""
    if isinstance(data, str):
        return FileContent(path=path, content=data, source=source, branch=branch)
    if is_binary_content(data, path):
        return FileContent(
            path=path,
            binary_data_url=to_data_url(data, mime_type or guess_mime_type(path)),
            source=source,
            branch=branch,
        )
    return FileContent(path=path, content=data.decode("utf-8", errors="replace"), source=source, branch=branch)


class FileContentResolver:
    """
    Resolves single file reads for a repository view.

    A path that could not be found anywhere is retried at most
    ``max_not_found_retries`` more times per session; after that, reads of
    it fail immediately without network access.
    """

    def __init__(
        self,
        backend: GitBackend,
        cache: RepositoryCache,
        mirror: MirrorBridgeBackend | None = None,
        config: ResolverConfig | None = None,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.mirror = mirror
        self.config = config or ResolverConfig()
        self._misses: dict[tuple[str, str, str, str], int] = {}

    async def resolve(
        self,
        path: str,
        branch: str,
        context: ResolutionContext,
        tree_files: list[FileEntry],
        tree_result: TreeFetchResult | None = None,
    ) -> FileContent:
        """
        Resolve one file.

        Args:
            path: File path relative to the repository root
            branch: Branch to read
            context: Resolution context of the view
            tree_files: Entries known for the branch (may carry inline content)
            tree_result: The tree round, for its successful sources and candidates

        Returns:
            FileContent with either text or a binary data URL

        Raises:
            NotFoundError: If no source has the file
        """
        path = normalize_path(path)
        miss_key = (context.owner_key, context.repo_name, branch, path)
        if self._misses.get(miss_key, 0) > self.config.max_not_found_retries:
            raise NotFoundError("FILE_NOT_FOUND", f"{path} was not found on any source")

        content = await self._resolve_chain(path, branch, context, tree_files, tree_result)
        if content is None:
            self._misses[miss_key] = self._misses.get(miss_key, 0) + 1
            logger.info("File %s not found on any source", path)
            raise NotFoundError("FILE_NOT_FOUND", f"{path} was not found on any source")

        self._misses.pop(miss_key, None)
        return content

    async def _resolve_chain(
        self,
        path: str,
        branch: str,
        context: ResolutionContext,
        tree_files: list[FileEntry],
        tree_result: TreeFetchResult | None,
    ) -> FileContent | None:
        for entry in tree_files:
            if entry.path == path and entry.content is not None:
                if entry.is_binary:
                    # inline binary content is already base64
                    return FileContent(
                        path=path,
                        binary_data_url=f"data:{guess_mime_type(path)};base64,{entry.content}",
                        source="embedded",
                        branch=branch,
                    )
                return FileContent(path=path, content=entry.content, source="embedded", branch=branch)

        edit = self.cache.get_pending_edit(context.owner_key, context.repo_name, path)
        if edit is not None:
            if edit.is_binary:
                return FileContent(
                    path=path,
                    binary_data_url=f"data:{edit.mime_type or guess_mime_type(path)};base64,{edit.content}",
                    source="local",
                    branch=branch,
                )
            return FileContent(path=path, content=edit.content, source="local", branch=branch)

        # bridge clones already asked, keyed by (backend, owner key, repository)
        asked: set[tuple[GitBackend, str, str]] = set()
        if self.mirror is not None:
            asked.add((self.mirror, context.owner_key, context.repo_name))
            try:
                data = await asyncio.wait_for(
                    self.mirror.read_cached(context.owner_key, context.repo_name, path, branch),
                    timeout=self.config.source_timeout,
                )
            except (GitRelayError, httpx.HTTPError, asyncio.TimeoutError) as e:
                logger.debug("Bridge cache miss for %s: %s", path, e)
            except Exception:
                logger.exception("Unexpected error reading %s from the bridge", path)
            else:
                return build_content(path, data, "bridge", branch)

        for candidate in self._ordered_sources(tree_result):
            bridge_key = self._bridge_key(candidate, context.owner_key)
            if bridge_key is not None:
                if bridge_key in asked:
                    continue
                asked.add(bridge_key)
            try:
                data = await asyncio.wait_for(
                    self.backend.fetch_file(candidate, path, branch, context.owner_key),
                    timeout=self.config.source_timeout,
                )
            except (GitRelayError, httpx.HTTPError, asyncio.TimeoutError) as e:
                logger.debug("%s from %s failed: %s", path, candidate.url, e)
                continue
            except Exception:
                logger.exception("Unexpected error reading %s from %s", path, candidate.url)
                continue
            logger.debug(
                "Read %s for %s/%s from %s",
                path, short_key(context.owner_key), context.repo_name, candidate.url,
            )
            return build_content(path, data, candidate.url, branch)

        return None

    def _ordered_sources(self, tree_result: TreeFetchResult | None) -> list[SourceCandidate]:
        """Successful sources in success order, then every candidate, each once."""
        if tree_result is None:
            return []
        ordered: list[SourceCandidate] = []
        seen: set[str] = set()
        successful = list(tree_result.successful_sources)
        if tree_result.source_of_record is not None:
            successful.insert(0, tree_result.source_of_record)
        for candidate in successful + [s.candidate for s in tree_result.statuses]:
            if candidate.url not in seen:
                seen.add(candidate.url)
                ordered.append(candidate)
        return ordered

    def _bridge_key(
        self,
        candidate: SourceCandidate,
        owner_key: str,
    ) -> tuple[GitBackend, str, str] | None:
        """Where ``candidate`` is served from a bridge clone, which clone that is."""
        target = self.backend.backend_for(candidate) if isinstance(self.backend, BackendRouter) else self.backend
        if not isinstance(target, MirrorBridgeBackend):
            return None
        try:
            owner, repo = target.clone_key(candidate, owner_key)
        except GitRelayError:
            return None
        return target, owner, repo


__all__ = [
    "FileContentResolver",
    "build_content",
    "guess_mime_type",
    "is_binary_content",
    "to_data_url",
]
