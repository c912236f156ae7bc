"""
Repository announcement resolution.

Announcements are replaceable records published to many relays. Relays may
hold different versions; the current announcement is always the single
record with the greatest ``(created_at, id)``, never a merge of several.
"""

import asyncio
import json
from collections.abc import Callable, Iterable
from typing import Any

from gitrelay.bech32 import NPUB_PREFIX, npub_decode
from gitrelay.cache import RepositoryCache
from gitrelay.config import ResolverConfig
from gitrelay.event import ANNOUNCEMENT_KINDS, RelayEvent, is_hex_key
from gitrelay.exceptions import CorruptedError, DecodeError, NotFoundError
from gitrelay.logging import get_logger, short_key
from gitrelay.relays import RelayPool, announcement_filter, normalize_relay_url, prioritize_relays
from gitrelay.types.announcements import Contributor, ContributorRole, RepositoryAnnouncement
from gitrelay.types.files import FileEntry

logger = get_logger("relay")

OWNER_WEIGHT = 100
MAINTAINER_WEIGHT = 50


def _clean_strings(values: Iterable[Any]) -> list[str]:
    """Strip, drop non-strings and empties, keep first occurrence order."""
    result: list[str] = []
    for value in values:
        if isinstance(value, str):
            value = value.strip()
            if value and value not in result:
                result.append(value)
    return result


def _parse_weight(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        weight = int(value)
    elif isinstance(value, str):
        try:
            weight = int(float(value.strip()))
        except ValueError:
            return 0
    else:
        return 0
    return max(0, min(OWNER_WEIGHT, weight))


def normalize_contributors(contributors: list[Contributor], owner_key: str) -> list[Contributor]:
    """
    Deduplicate contributors and pin the owner.

    Entries are deduplicated by key, else by login (case-insensitive);
    entries with neither are dropped. The owner key ends up as the only
    owner, first in the list, synthesized if it was missing.
    """
    owner_key = owner_key.lower()
    seen: set[str] = set()
    owner: Contributor | None = None
    others: list[Contributor] = []

    for contributor in contributors:
        key = contributor.key.lower() if is_hex_key(contributor.key) else None
        login = contributor.login.strip().lower() if contributor.login and contributor.login.strip() else None
        identity = f"key:{key}" if key else (f"login:{login}" if login else None)
        if identity is None or identity in seen:
            continue
        seen.add(identity)

        if key == owner_key:
            owner = Contributor(
                key=key,
                display_name=contributor.display_name,
                avatar_url=contributor.avatar_url,
                weight=OWNER_WEIGHT,
                role=ContributorRole.OWNER,
                login=contributor.login,
            )
            continue

        weight = contributor.weight
        role = contributor.role
        if role is ContributorRole.OWNER or weight >= OWNER_WEIGHT:
            weight = min(max(weight, MAINTAINER_WEIGHT), OWNER_WEIGHT - 1)
            role = ContributorRole.MAINTAINER
        others.append(
            Contributor(
                key=key,
                display_name=contributor.display_name,
                avatar_url=contributor.avatar_url,
                weight=weight,
                role=role,
                login=contributor.login,
            )
        )

    if owner is None:
        owner = Contributor(key=owner_key, weight=OWNER_WEIGHT, role=ContributorRole.OWNER)
    return [owner] + others


class AnnouncementParser:
    """
    Builds a ``RepositoryAnnouncement`` from one relay event.

    Tags take precedence; the JSON payload in ``content`` only fills fields
    whose tag is absent. Malformed tags or payloads never raise.
    """

    def parse(self, event: RelayEvent) -> RepositoryAnnouncement:
        """
        Parse an announcement event.

        Args:
            event: Relay event of an announcement kind

        Returns:
            Parsed announcement (repo_name may be empty if the event names none)

        Raises:
            CorruptedError: If the payload claims an owner other than the author
        """
        payload = self._load_payload(event.content)
        self._check_ownership(event, payload)

        repo_name = event.first_tag("d") or _first_str(payload.get("repositoryName")) or event.first_tag("name") or ""

        description = event.first_tag("description")
        if description is None:
            description = _first_str(payload.get("description")) or ""

        clone_locations = _clean_strings(self._tag_values_all(event, "clone"))
        if not clone_locations:
            clone_locations = _clean_strings(_as_list(payload.get("clone")))

        relay_values = self._tag_values_all(event, "relays") + self._tag_values_all(event, "relay")
        if not relay_values:
            relay_values = [v for v in _as_list(payload.get("relays")) if isinstance(v, str)]
        relay_list = self._parse_relays(relay_values)

        source_mirror = event.first_tag("source") or _first_str(payload.get("sourceUrl"))
        forked_from = event.first_tag("forkedFrom") or _first_str(payload.get("forkedFrom"))

        topics = _clean_strings(event.tag_values("t"))
        if not topics:
            topics = _clean_strings(_as_list(payload.get("topics")))

        contributors = self._parse_contributor_tags(event)
        if not contributors:
            contributors = self._parse_contributor_payload(payload.get("contributors"))

        files = [
            entry for entry in (FileEntry.from_dict(item) for item in _as_list(payload.get("files")))
            if entry is not None
        ]

        return RepositoryAnnouncement(
            repo_name=repo_name,
            owner_key=event.pubkey,
            event_id=event.id,
            created_at=event.created_at,
            description=description,
            clone_locations=clone_locations,
            relay_list=relay_list,
            source_mirror=source_mirror,
            forked_from=forked_from,
            contributors=normalize_contributors(contributors, event.pubkey),
            web=_clean_strings(self._tag_values_all(event, "web")),
            topics=topics,
            default_branch=_first_str(payload.get("defaultBranch")),
            embedded_files=files,
            deleted=payload.get("deleted") is True or payload.get("archived") is True,
            kind=event.kind,
        )

    def _load_payload(self, content: str) -> dict[str, Any]:
        if not content or not content.lstrip().startswith("{"):
            return {}
        try:
            payload = json.loads(content)
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    def _check_ownership(self, event: RelayEvent, payload: dict[str, Any]) -> None:
        claimed = payload.get("ownerPubkey")
        if is_hex_key(claimed) and claimed.lower() != event.pubkey:
            raise CorruptedError(
                f"ownerPubkey {short_key(claimed)} does not match author {short_key(event.pubkey)}",
                event_id=event.id,
            )

        entity = payload.get("entity")
        if isinstance(entity, str) and entity.startswith(NPUB_PREFIX + "1"):
            try:
                entity_key = npub_decode(entity)
            except DecodeError:
                logger.debug("Ignoring undecodable entity in %s", short_key(event.id))
                return
            if entity_key != event.pubkey:
                raise CorruptedError(
                    f"entity {entity[:16]}... does not match author {short_key(event.pubkey)}",
                    event_id=event.id,
                )

    def _tag_values_all(self, event: RelayEvent, name: str) -> list[str]:
        """Every value of every tag named ``name`` (tags may carry several)."""
        values: list[str] = []
        for tag in event.tags:
            if tag[0] == name:
                values.extend(tag[1:])
        return values

    def _parse_relays(self, values: list[str]) -> list[str]:
        relays: list[str] = []
        for value in values:
            for part in value.split(","):
                url = normalize_relay_url(part)
                if url is not None and url not in relays:
                    relays.append(url)
        return relays

    def _parse_contributor_tags(self, event: RelayEvent) -> list[Contributor]:
        contributors: list[Contributor] = []
        for tag in event.tags:
            if tag[0] == "p" and len(tag) >= 2:
                weight = _parse_weight(tag[2]) if len(tag) >= 3 else 0
                role = ContributorRole.parse(tag[3]) if len(tag) >= 4 else None
                value = tag[1].strip()
                contributors.append(
                    Contributor(
                        key=value.lower() if is_hex_key(value) else None,
                        login=None if is_hex_key(value) else value or None,
                        weight=weight,
                        role=role or ContributorRole.from_weight(weight),
                    )
                )
            elif tag[0] == "maintainers":
                for key in tag[1:]:
                    if is_hex_key(key):
                        contributors.append(
                            Contributor(key=key.lower(), weight=MAINTAINER_WEIGHT, role=ContributorRole.MAINTAINER)
                        )
        return contributors

    def _parse_contributor_payload(self, raw: Any) -> list[Contributor]:
        contributors: list[Contributor] = []
        for item in _as_list(raw):
            if not isinstance(item, dict):
                continue
            key = item.get("pubkey")
            weight = _parse_weight(item.get("weight"))
            contributors.append(
                Contributor(
                    key=key.lower() if is_hex_key(key) else None,
                    display_name=_first_str(item.get("name")),
                    avatar_url=_first_str(item.get("picture")),
                    weight=weight,
                    role=ContributorRole.parse(item.get("role")) or ContributorRole.from_weight(weight),
                    login=_first_str(item.get("githubLogin")),
                )
            )
        return contributors


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if value is None:
        return []
    return [value]


def _first_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class AnnouncementReconciler:
    """
    Keeps the newest announcement for one (owner, repository).

    Only the best ``(created_at, id)`` pair is retained. A strictly greater
    pair replaces the current announcement and rebuilds it from that single
    record; anything else is discarded.
    """

    def __init__(
        self,
        owner_key: str,
        repo_name: str,
        parser: AnnouncementParser | None = None,
        verify_ids: bool = True,
    ) -> None:
        self.owner_key = owner_key.lower()
        self.repo_name = repo_name
        self.parser = parser or AnnouncementParser()
        self.verify_ids = verify_ids
        self.best: RepositoryAnnouncement | None = None
        self.corruption: CorruptedError | None = None
        self.accepted_count = 0
        self._best_key: tuple[int, str] | None = None

    @property
    def has_record(self) -> bool:
        return self._best_key is not None

    def offer(self, event: RelayEvent) -> bool:
        """
        Offer one event.

        Returns:
            True if the event was usable (passed acceptance checks)
        """
        if event.kind not in ANNOUNCEMENT_KINDS:
            logger.debug("Dropping %s: kind %d", short_key(event.id), event.kind)
            return False
        if event.pubkey != self.owner_key:
            logger.debug("Dropping %s: author %s", short_key(event.id), short_key(event.pubkey))
            return False
        if self.verify_ids and not event.has_valid_id():
            logger.warning("Dropping %s: id does not match content", short_key(event.id))
            return False

        d_tag = event.first_tag("d")
        if d_tag is not None and d_tag != self.repo_name:
            logger.debug("Dropping %s: d tag %r", short_key(event.id), d_tag)
            return False

        key = (event.created_at, event.id)
        if self._best_key is not None and key <= self._best_key:
            self.accepted_count += 1
            return True

        try:
            announcement = self.parser.parse(event)
        except CorruptedError as e:
            logger.error("Refusing %s: %s", short_key(event.id), e.message)
            self._best_key = key
            self.best = None
            self.corruption = e
            self.accepted_count += 1
            return True

        if announcement.repo_name != self.repo_name:
            logger.debug("Dropping %s: names %r", short_key(event.id), announcement.repo_name)
            return False

        self._best_key = key
        self.best = announcement
        self.corruption = None
        self.accepted_count += 1
        return True

    def result(self) -> RepositoryAnnouncement:
        """
        Return the current announcement.

        Raises:
            CorruptedError: If the newest record is corrupted
            NotFoundError: If no record was accepted
        """
        if self.corruption is not None:
            raise self.corruption
        if self.best is None:
            raise NotFoundError(
                "ANNOUNCEMENT_NOT_FOUND",
                f"No announcement for {short_key(self.owner_key)}/{self.repo_name}",
            )
        return self.best


class EventResolver:
    """
    Queries relays for a repository's announcement and reconciles replies.

    Every relay reply is funnelled through one asyncio queue consumed by a
    single loop, so record replacement is totally ordered.
    """

    def __init__(
        self,
        pool: RelayPool,
        cache: RepositoryCache | None = None,
        config: ResolverConfig | None = None,
        parser: AnnouncementParser | None = None,
    ) -> None:
        self.pool = pool
        self.cache = cache
        self.config = config or ResolverConfig()
        self.parser = parser or AnnouncementParser()

    def relays_for(self, owner_key: str | None, repo_name: str, extra_relays: Iterable[str] = ()) -> list[str]:
        """Configured relays, then relays the cached record lists, then extras; git relays first."""
        relays = list(self.config.relays)
        if self.cache is not None and owner_key is not None:
            record = self.cache.get_repository(owner_key, repo_name)
            if record is not None:
                relays.extend(record.relay_list)
        relays.extend(extra_relays)
        return prioritize_relays(relays, self.config.mirror_hosts, self.config.max_relays)

    async def resolve(
        self,
        owner_key: str,
        repo_name: str,
        extra_relays: Iterable[str] = (),
    ) -> RepositoryAnnouncement:
        """
        Resolve the current announcement for a repository.

        Args:
            owner_key: 64-hex owner key
            repo_name: Repository identifier
            extra_relays: Additional relays to query

        Returns:
            The announcement built from the newest record

        Raises:
            NotFoundError: If no relay returned a matching record
            CorruptedError: If the newest record's ownership fields are inconsistent
        """
        reconciler = AnnouncementReconciler(
            owner_key, repo_name, parser=self.parser, verify_ids=self.config.verify_event_ids
        )
        relays = self.relays_for(owner_key, repo_name, extra_relays)
        logger.info(
            "Querying %d relays for %s/%s", len(relays), short_key(owner_key), repo_name
        )
        await self._collect(announcement_filter(owner_key, repo_name), relays, reconciler.offer)

        announcement = reconciler.result()
        logger.info(
            "Resolved %s/%s from %s (created_at=%d)",
            short_key(owner_key), repo_name, short_key(announcement.event_id), announcement.created_at,
        )
        if self.cache is not None:
            self.cache.record_activity(owner_key, repo_name)
        return announcement

    async def find_owner_by_prefix(self, prefix: str, repo_name: str) -> str | None:
        """
        Broad query for an announcement whose author key starts with ``prefix``.

        Returns:
            Author key of the newest matching announcement, or None
        """
        prefix = prefix.lower()
        best: dict[str, Any] = {"key": None, "owner": None}

        def consider(event: RelayEvent) -> bool:
            if event.kind not in ANNOUNCEMENT_KINDS or not event.pubkey.startswith(prefix):
                return False
            if event.first_tag("d") != repo_name:
                return False
            if self.config.verify_event_ids and not event.has_valid_id():
                return False
            key = (event.created_at, event.id)
            if best["key"] is None or key > best["key"]:
                best["key"] = key
                best["owner"] = event.pubkey
            return True

        relays = self.relays_for(None, repo_name)
        await self._collect(announcement_filter(None, repo_name), relays, consider)
        if best["owner"] is not None:
            logger.info("Prefix %s resolved to %s via relays", prefix, short_key(best["owner"]))
        return best["owner"]

    async def _collect(
        self,
        query: dict[str, Any],
        relays: list[str],
        handle: Callable[[RelayEvent], bool],
    ) -> None:
        """
        Run one subscription until a stop condition holds.

        Stops ``event_grace`` seconds after the first usable record, once
        every relay reported end-of-stream (waiting ``eose_grace`` for late
        records when none arrived), or at ``relay_timeout``.
        """
        if not relays:
            return

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[tuple[str, Any, str]] = asyncio.Queue()

        def on_event(event: dict[str, Any], relay_url: str) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, ("event", event, relay_url))

        def on_eose(relay_url: str) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, ("eose", None, relay_url))

        unsubscribe = self.pool.subscribe([query], relays, on_event, on_eose)
        deadline = loop.time() + self.config.relay_timeout
        grace_deadline: float | None = None
        eose_deadline: float | None = None
        finished: set[str] = set()
        usable = False

        try:
            while True:
                now = loop.time()
                limit = deadline
                if grace_deadline is not None:
                    limit = min(limit, grace_deadline)
                if finished.issuperset(relays):
                    if usable:
                        break
                    if eose_deadline is None:
                        eose_deadline = now + self.config.eose_grace
                    limit = min(limit, eose_deadline)

                remaining = limit - now
                if remaining <= 0:
                    break
                try:
                    message, payload, relay_url = await asyncio.wait_for(queue.get(), remaining)
                except asyncio.TimeoutError:
                    break

                if message == "eose":
                    logger.debug("End of stream from %s", relay_url)
                    finished.add(relay_url)
                    continue

                event = RelayEvent.from_dict(payload)
                if event is None:
                    logger.debug("Dropping malformed event from %s", relay_url)
                    continue
                if handle(event) and not usable:
                    usable = True
                    grace_deadline = loop.time() + self.config.event_grace
        finally:
            unsubscribe()


__all__ = [
    "AnnouncementParser",
    "AnnouncementReconciler",
    "EventResolver",
    "normalize_contributors",
]
