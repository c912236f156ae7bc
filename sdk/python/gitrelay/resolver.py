"""
gitrelay async resolver.

Provides the entry point for resolving relay-announced repositories into
browsable file trees.
"""

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Any

import httpx

from gitrelay.announcements import EventResolver
from gitrelay.arbiter import LocalPrecedenceArbiter
from gitrelay.backends import (
    BackendRouter,
    GitBackend,
    GiteaBackend,
    GitHubBackend,
    GitLabBackend,
    MirrorBridgeBackend,
)
from gitrelay.cache import KeyValueStore, RepositoryCache
from gitrelay.config import ResolverConfig
from gitrelay.content import FileContentResolver
from gitrelay.context import InflightRegistry, ResolutionContext, RoundKey
from gitrelay.exceptions import NotFoundError
from gitrelay.identity import IdentityResolver, is_prefix
from gitrelay.logging import get_logger, short_key
from gitrelay.relays import RelayPool
from gitrelay.sources import SourceExpander
from gitrelay.transport import AsyncHTTPTransport, RetryConfig
from gitrelay.tree import MultiSourceTreeFetcher, StatusCallback, TreeFetchResult, TreeFetchRound
from gitrelay.types.announcements import RepositoryAnnouncement
from gitrelay.types.files import FileContent, FileEntry, ResolvedTree
from gitrelay.types.identity import RepositoryIdentity
from gitrelay.types.sources import FetchStatus, SourceCandidate

logger = get_logger()

DEFAULT_BRANCH = "main"


@dataclass
class RepositoryView:
    """Everything needed to render one repository branch."""

    identity: RepositoryIdentity
    announcement: RepositoryAnnouncement | None = None
    candidates: list[SourceCandidate] = field(default_factory=list)
    tree: ResolvedTree | None = None
    statuses: list[FetchStatus] = field(default_factory=list)
    source_of_record: str | None = None
    successful_sources: list[SourceCandidate] = field(default_factory=list)
    from_cache: bool = False
    deleted: bool = False
    context: ResolutionContext | None = None
    tree_result: TreeFetchResult | None = None

    @property
    def files(self) -> list[FileEntry]:
        return self.tree.files if self.tree is not None else []

    @property
    def branch(self) -> str | None:
        return self.context.branch if self.context is not None else None

    @property
    def has_files(self) -> bool:
        return bool(self.files)


class AsyncRepoResolver:
    """
    Async resolver for relay-announced git repositories.

    Aggregates identity resolution, announcement reconciliation, source
    expansion, multi-source tree fetching and file reads behind one object.

    Example:
        ```python
        import asyncio
        from gitrelay import AsyncRepoResolver

        async def main(pool):
            async with AsyncRepoResolver(pool) as resolver:
                view = await resolver.resolve_tree("npub1...", "my-repo")
                for entry in view.files:
                    print(entry.path)
                readme = await resolver.read_file(view, "README.md")

        asyncio.run(main(my_relay_pool))
        ```
    """

    def __init__(
        self,
        pool: RelayPool,
        config: ResolverConfig | None = None,
        store: KeyValueStore | None = None,
        backend: GitBackend | None = None,
        retry_config: RetryConfig | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            pool: Relay pool used for announcement queries
            config: Resolver configuration (default: ResolverConfig())
            store: Persistent key-value store (default: in-memory store)
            backend: Git backend to use instead of the default router
            retry_config: Retry behavior for backend HTTP requests
            http_transport: httpx transport for every HTTP client (tests pass
                ``httpx.MockTransport``)
        """
        self.config = config or ResolverConfig()
        self.pool = pool
        self.cache = RepositoryCache(store)

        def transport(base_url: str = "", headers: dict[str, str] | None = None,
                      retries: RetryConfig | None = retry_config) -> AsyncHTTPTransport:
            return AsyncHTTPTransport(
                base_url=base_url,
                timeout=self.config.http_timeout,
                retry_config=retries,
                headers=headers,
                transport=http_transport,
            )

        # Name-service lookups are not retried.
        self._http = transport(retries=RetryConfig(max_retries=0))

        self.mirror: MirrorBridgeBackend | None = None
        if self.config.bridge_url:
            self.mirror = MirrorBridgeBackend(transport(self.config.bridge_url))

        self._closers: list[GitBackend] = []
        if backend is None:
            github_headers = {"Accept": "application/vnd.github+json"}
            if self.config.github_token:
                github_headers["Authorization"] = f"Bearer {self.config.github_token}"
            backend = BackendRouter(
                mirror=self.mirror,
                services={
                    "github": GitHubBackend(transport(self.config.github_api_url, github_headers)),
                    "gitlab": GitLabBackend(transport(self.config.gitlab_api_url)),
                    "codeberg": GiteaBackend(transport(self.config.codeberg_api_url)),
                },
            )
        elif self.mirror is not None:
            self._closers.append(self.mirror)
        self.backend = backend

        self.identity = IdentityResolver(self.cache, self._http, self.config)
        self.events = EventResolver(pool, self.cache, self.config)
        self.expander = SourceExpander(self.config)
        self.fetcher = MultiSourceTreeFetcher(self.backend, self.config)
        self.content = FileContentResolver(self.backend, self.cache, self.mirror, self.config)
        self.arbiter = LocalPrecedenceArbiter()
        self.inflight = InflightRegistry()

        self._announcements: dict[tuple[str, str], RepositoryAnnouncement] = {}
        self._rounds: dict[RoundKey, TreeFetchRound] = {}
        self._listeners: dict[RoundKey, list[StatusCallback]] = {}

    @classmethod
    def from_env(
        cls,
        pool: RelayPool,
        store: KeyValueStore | None = None,
        retry_config: RetryConfig | None = None,
    ) -> "AsyncRepoResolver":
        """
        Create a resolver configured from ``GITRELAY_*`` environment variables.

        See ``ResolverConfig.from_env`` for the variables read.

        Raises:
            ConfigurationError: If a variable has an invalid value
        """
        return cls(pool, config=ResolverConfig.from_env(), store=store, retry_config=retry_config)

    async def resolve_identity(self, entity: str, repo_name: str) -> RepositoryIdentity:
        """
        Resolve a route entity to an owner key.

        Falls back to a broad relay query when an 8-character prefix is not
        known locally.
        """
        identity = await self.identity.identify(entity, repo_name)
        if identity.owner_key is None and is_prefix(entity):
            owner_key = await self.events.find_owner_by_prefix(entity, repo_name)
            if owner_key is not None:
                identity = RepositoryIdentity(entity, repo_name, owner_key, identity.kind)
        return identity

    async def resolve_announcement(self, owner_key: str, repo_name: str) -> RepositoryAnnouncement:
        """
        Resolve the current announcement and remember its metadata locally.

        Raises:
            NotFoundError: If no relay holds an announcement
            CorruptedError: If the announcement's ownership is inconsistent
        """
        memo_key = (owner_key, repo_name)
        if memo_key in self._announcements:
            return self._announcements[memo_key]

        announcement = await self.events.resolve(owner_key, repo_name)
        self._announcements[memo_key] = announcement
        if not announcement.deleted:
            self.cache.put_announcement(announcement)
        return announcement

    def expand_sources(self, announcement: RepositoryAnnouncement) -> list[SourceCandidate]:
        return self.expander.expand(announcement.clone_locations, announcement.source_mirror)

    async def resolve_tree(
        self,
        entity: str,
        repo_name: str,
        branch: str | None = None,
        on_status: StatusCallback | None = None,
    ) -> RepositoryView:
        """
        Resolve a repository branch into a view.

        Args:
            entity: Route entity (key, npub, prefix or handle)
            repo_name: Repository name
            branch: Branch to show (default: announced default branch, else main)
            on_status: Receives per-source status changes as they happen. A call
                that joins a round already in flight receives the changes made
                after it joined.

        Returns:
            RepositoryView; an empty file list is a normal outcome

        Raises:
            NotFoundError: If the owner or announcement cannot be found
            CorruptedError: If the announcement's ownership is inconsistent
        """
        identity = await self.resolve_identity(entity, repo_name)
        if identity.owner_key is None:
            raise NotFoundError("IDENTITY_NOT_FOUND", f"Cannot resolve {entity!r} to an owner key")

        announcement = await self.resolve_announcement(identity.owner_key, repo_name)
        if announcement.deleted:
            logger.info("%s/%s is deleted or archived", short_key(identity.owner_key), repo_name)
            return RepositoryView(identity=identity, announcement=announcement, deleted=True)

        branch = branch or announcement.default_branch or DEFAULT_BRANCH
        key: RoundKey = (identity.owner_key, repo_name, branch)

        task = self.inflight.get(key)
        if task is None:
            listeners: list[StatusCallback] = []
            self._listeners[key] = listeners
            task = asyncio.ensure_future(
                self._resolve_round(identity, announcement, branch, self._fan_out(listeners))
            )
            task.add_done_callback(lambda _t, k=key, ls=listeners: self._drop_listeners(k, ls))
            self.inflight.register(key, task)
        else:
            logger.debug("Joining in-flight round for %s/%s@%s", short_key(key[0]), repo_name, branch)
        if on_status is not None and key in self._listeners:
            self._listeners[key].append(on_status)
        return await asyncio.shield(task)

    @staticmethod
    def _fan_out(listeners: list[StatusCallback]) -> StatusCallback:
        def notify(status: FetchStatus) -> None:
            for listener in list(listeners):
                try:
                    listener(replace(status))
                except Exception:
                    logger.exception("Status callback failed for %s", status.candidate.url)

        return notify

    def _drop_listeners(self, key: RoundKey, listeners: list[StatusCallback]) -> None:
        # The round keeps notifying ``listeners``; only new joins stop here.
        if self._listeners.get(key) is listeners:
            del self._listeners[key]

    async def _resolve_round(
        self,
        identity: RepositoryIdentity,
        announcement: RepositoryAnnouncement,
        branch: str,
        on_status: StatusCallback | None,
    ) -> RepositoryView:
        owner_key = announcement.owner_key
        repo_name = announcement.repo_name
        context = ResolutionContext(
            identity=identity,
            owner_key=owner_key,
            repo_name=repo_name,
            branch=branch,
            round_id=self.inflight.next_round_id(),
        )
        candidates = self.expand_sources(announcement)

        previous = self._rounds.pop(context.key, None)
        if previous is not None:
            previous.cancel()
        fetch_round = self.fetcher.start(candidates, branch, owner_key, on_status)
        self._rounds[context.key] = fetch_round

        try:
            result = await fetch_round.first_success()
        except asyncio.CancelledError:
            fetch_round.cancel()
            raise

        files = result.files
        source_of_record = result.source_of_record.url if result.source_of_record else None
        if not files and announcement.embedded_files:
            files = list(announcement.embedded_files)
            source_of_record = "embedded"

        remote_tree = ResolvedTree(
            owner_key=owner_key,
            repo_name=repo_name,
            branch=branch,
            files=files,
            source_of_record=source_of_record,
            fetched_at=time.time(),
            round_id=context.round_id,
        )

        local = self.cache.get_repository(owner_key, repo_name)
        decision = self.arbiter.decide(local, branch)
        view = RepositoryView(
            identity=identity,
            announcement=announcement,
            candidates=candidates,
            tree=remote_tree,
            statuses=result.statuses,
            source_of_record=source_of_record,
            successful_sources=result.successful_sources,
            context=context,
            tree_result=result,
        )

        if decision.write_to_cache:
            if files:
                self.cache.put_tree(remote_tree)
            else:
                cached = self.cache.get_tree(owner_key, repo_name, branch)
                if cached is not None and cached.files:
                    view.tree = cached
                    view.from_cache = True
        else:
            logger.info(
                "Keeping local tree for %s/%s@%s: %s",
                short_key(owner_key), repo_name, branch, decision.reason,
            )
            local_files = local.files_for(branch) if local is not None else []
            if local_files:
                view.tree = ResolvedTree(
                    owner_key=owner_key,
                    repo_name=repo_name,
                    branch=branch,
                    files=list(local_files),
                    source_of_record="local",
                    round_id=context.round_id,
                )
                view.source_of_record = "local"
                view.from_cache = True

        if not view.has_files:
            logger.info("No files available for %s/%s@%s", short_key(owner_key), repo_name, branch)
        return view

    async def read_file(self, view: RepositoryView, path: str) -> FileContent:
        """
        Read one file of a resolved view.

        Raises:
            NotFoundError: If no source has the file
        """
        if view.context is None:
            raise NotFoundError("FILE_NOT_FOUND", f"{path}: repository has no readable tree")

        fetch_round = self._rounds.get(view.context.key)
        tree_result = fetch_round.result() if fetch_round is not None else view.tree_result
        tree_files = list(view.announcement.embedded_files) if view.announcement else []
        tree_files.extend(view.files)
        return await self.content.resolve(path, view.context.branch, view.context, tree_files, tree_result)

    def cancel(self, owner_key: str, repo_name: str, branch: str) -> bool:
        """
        Cancel every outstanding fetch for ``(owner, repo, branch)``.

        Returns:
            True if anything was running
        """
        key: RoundKey = (owner_key, repo_name, branch)
        cancelled = self.inflight.cancel(key)
        fetch_round = self._rounds.pop(key, None)
        if fetch_round is not None and not fetch_round.done:
            fetch_round.cancel()
            cancelled = True
        return cancelled

    def invalidate(self, owner_key: str, repo_name: str, branch: str | None = None) -> None:
        """Drop the memoized announcement and the cached tree so the next view re-resolves."""
        self._announcements.pop((owner_key, repo_name), None)
        if branch is not None:
            self.cancel(owner_key, repo_name, branch)
            self.cache.delete_tree(owner_key, repo_name, branch)

    async def close(self) -> None:
        """Cancel outstanding work and release HTTP clients and the relay pool."""
        self.inflight.cancel_all()
        for fetch_round in self._rounds.values():
            fetch_round.cancel()
        self._rounds.clear()
        self._listeners.clear()
        await self.backend.close()
        for closer in self._closers:
            await closer.close()
        await self._http.close()
        await self.pool.close()

    async def __aenter__(self) -> "AsyncRepoResolver":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
