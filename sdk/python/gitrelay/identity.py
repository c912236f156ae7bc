"""
Identity resolution.

Turns a route entity (hex key, ``npub1...``, 8-character key prefix or
``name@domain`` handle) into a canonical 64-hex owner key.
"""

import asyncio
import re

from gitrelay.bech32 import NPUB_PREFIX, npub_decode
from gitrelay.cache import RepositoryCache
from gitrelay.config import ResolverConfig
from gitrelay.event import is_hex_key
from gitrelay.exceptions import DecodeError, GitRelayError
from gitrelay.logging import get_logger, short_key
from gitrelay.transport import AsyncHTTPTransport
from gitrelay.types.identity import EntityKind, RepositoryIdentity

logger = get_logger()

PREFIX_LENGTH = 8
_PREFIX_PATTERN = re.compile(r"^[0-9a-fA-F]{8}$")


def strip_uri_scheme(entity: str) -> str:
    entity = entity.strip()
    if entity.lower().startswith("nostr:"):
        return entity[len("nostr:"):]
    return entity


def classify(entity: str) -> EntityKind:
    """Classify a raw route entity by shape (no validation of checksums)."""
    entity = strip_uri_scheme(entity)
    if is_hex_key(entity):
        return EntityKind.HEX_KEY
    if entity.lower().startswith(NPUB_PREFIX + "1"):
        return EntityKind.NPUB
    if _PREFIX_PATTERN.match(entity):
        return EntityKind.PREFIX
    if "@" in entity:
        return EntityKind.HANDLE
    return EntityKind.UNKNOWN


def is_prefix(entity: str) -> bool:
    return classify(entity) is EntityKind.PREFIX


def split_handle(entity: str) -> tuple[str, str] | None:
    """Split ``name@domain`` into (local, domain); None if either part is empty."""
    local, _, domain = strip_uri_scheme(entity).rpartition("@")
    local = local.strip().lower()
    domain = domain.strip().lower().rstrip("/")
    if not local or not domain or "/" in domain:
        return None
    return local, domain


class IdentityResolver:
    """
    Resolves route entities to owner keys.

    Synchronous resolution covers keys and prefixes found in the local
    cache. Name-service handles need a network round trip and go through
    ``resolve_async``; concurrent lookups of the same handle share one
    request.
    """

    def __init__(
        self,
        cache: RepositoryCache,
        http: AsyncHTTPTransport | None = None,
        config: ResolverConfig | None = None,
    ) -> None:
        self.cache = cache
        self.config = config or ResolverConfig()
        self._http = http
        self._memo: dict[tuple[str, str], str] = {}
        self._handle_lookups: dict[str, asyncio.Task[str | None]] = {}

    def classify(self, entity: str) -> EntityKind:
        return classify(entity)

    def resolve(self, raw_entity: str, repo_name: str) -> str | None:
        """
        Resolve an entity without network access.

        Never raises: malformed input resolves to None.

        Args:
            raw_entity: Route entity
            repo_name: Repository name, used to prefer the matching cached
                record when resolving a prefix

        Returns:
            Lowercase 64-hex owner key, or None
        """
        memo_key = (raw_entity, repo_name)
        if memo_key in self._memo:
            return self._memo[memo_key]

        entity = strip_uri_scheme(raw_entity)
        kind = classify(entity)
        owner_key: str | None = None

        if kind is EntityKind.HEX_KEY:
            owner_key = entity.lower()
        elif kind is EntityKind.NPUB:
            try:
                owner_key = npub_decode(entity)
            except DecodeError as e:
                logger.debug("Cannot decode %s: %s", entity[:16], e.message)
        elif kind is EntityKind.PREFIX:
            owner_key = self._resolve_prefix(entity.lower(), repo_name)

        # Only successes are memoized; a prefix may resolve once the cache fills.
        if owner_key is not None:
            self._memo[memo_key] = owner_key
        return owner_key

    async def resolve_async(self, raw_entity: str, repo_name: str) -> str | None:
        """
        Resolve an entity, looking up name-service handles over HTTP.

        Returns:
            Lowercase 64-hex owner key, or None
        """
        owner_key = self.resolve(raw_entity, repo_name)
        if owner_key is not None or classify(raw_entity) is not EntityKind.HANDLE:
            return owner_key

        parts = split_handle(raw_entity)
        if parts is None or self._http is None:
            return None

        handle = "@".join(parts)
        task = self._handle_lookups.get(handle)
        if task is None:
            task = asyncio.ensure_future(self._lookup_handle(self._http, *parts))
            self._handle_lookups[handle] = task
            task.add_done_callback(lambda _t, h=handle: self._handle_lookups.pop(h, None))

        # Shielded so one cancelled caller does not cancel the other waiters.
        owner_key = await asyncio.shield(task)
        if owner_key is not None:
            self._memo[(raw_entity, repo_name)] = owner_key
        return owner_key

    async def identify(self, raw_entity: str, repo_name: str) -> RepositoryIdentity:
        owner_key = await self.resolve_async(raw_entity, repo_name)
        return RepositoryIdentity(
            raw_entity=raw_entity,
            repo_name=repo_name,
            owner_key=owner_key,
            kind=classify(raw_entity),
        )

    def _resolve_prefix(self, prefix: str, repo_name: str) -> str | None:
        records = self.cache.list_repositories()

        matches = [r for r in records if r.owner_key.lower().startswith(prefix)]
        for record in matches:
            if record.repo_name == repo_name:
                return record.owner_key.lower()
        if matches:
            return matches[0].owner_key.lower()

        for record in records:
            for contributor in record.contributors:
                if contributor.key and contributor.key.lower().startswith(prefix):
                    return contributor.key.lower()

        for key in self.cache.activity_keys():
            if key.lower().startswith(prefix):
                return key.lower()

        return None

    async def _lookup_handle(self, http: AsyncHTTPTransport, local: str, domain: str) -> str | None:
        url = f"https://{domain}/.well-known/nostr.json"
        try:
            data = await asyncio.wait_for(
                http.get_json(url, params={"name": local}),
                timeout=self.config.handle_timeout,
            )
        except (GitRelayError, asyncio.TimeoutError) as e:
            logger.warning("Name-service lookup for %s@%s failed: %s", local, domain, e)
            return None

        names = data.get("names") if isinstance(data, dict) else None
        key = names.get(local) if isinstance(names, dict) else None
        if not is_hex_key(key):
            logger.info("Name-service %s has no key for %s", domain, local)
            return None

        logger.debug("Resolved %s@%s to %s", local, domain, short_key(key))
        return key.lower()


__all__ = [
    "IdentityResolver",
    "classify",
    "is_prefix",
    "split_handle",
    "strip_uri_scheme",
]
