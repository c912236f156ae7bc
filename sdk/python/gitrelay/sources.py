"""
Source expansion.

An announcement usually lists only one or two clone locations. Decentralized
mirrors replicate each other, so a single mirror URL implies the same
repository on every other known mirror. ``SourceExpander`` turns the sparse
list into a ranked, deduplicated candidate list for the fetchers.
"""

import dataclasses
import ipaddress
import re
from collections.abc import Iterable
from urllib.parse import urlparse

from gitrelay.config import EXTERNAL_HOSTS, KNOWN_MIRROR_HOSTS, ResolverConfig
from gitrelay.logging import get_logger
from gitrelay.relays import is_mirror_host
from gitrelay.types.sources import SourceCandidate, SourceKind

logger = get_logger()

_SCP_PATTERN = re.compile(r"^[\w.-]+@([^:/\s]+):/?(.+)$")
_NOSTR_PATTERN = re.compile(r"^nostr://([^/@]+)(?:@([^/]+))?/(.+)$")

_KIND_RANK = {SourceKind.EXTERNAL: 0, SourceKind.MIRROR: 1, SourceKind.UNKNOWN: 2}


def _strip_git_suffix(value: str) -> str:
    return value[:-4] if value.lower().endswith(".git") else value


def is_loopback(host: str) -> bool:
    """True for localhost names and loopback/unspecified addresses."""
    host = host.lower().strip("[]")
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_loopback or address.is_unspecified


def dedupe_key(url: str) -> str:
    """Case-insensitive identity of a URL ignoring a trailing ``.git`` and ``/``."""
    value = url.strip().lower().rstrip("/")
    return _strip_git_suffix(value).rstrip("/")


def parse_git_source(
    url: str,
    mirror_hosts: Iterable[str] = KNOWN_MIRROR_HOSTS,
) -> SourceCandidate | None:
    """
    Normalize and classify one clone location.

    SSH (``git@host:path``, ``ssh://``) and ``git://`` locations become
    ``https://``; ``nostr://npub[@domain]/repo`` becomes
    ``https://<domain>/<npub>/<repo>``, using the first known mirror when no
    domain is given.

    Args:
        url: Clone location as announced
        mirror_hosts: Known decentralized-mirror hosts

    Returns:
        SourceCandidate (priority 0, explicit), or None if unparseable
    """
    if not isinstance(url, str):
        return None
    mirror_hosts = list(mirror_hosts)
    raw = url.strip()
    if not raw:
        return None

    nostr_match = _NOSTR_PATTERN.match(raw)
    if nostr_match:
        npub, domain, repo = nostr_match.groups()
        if not domain:
            if not mirror_hosts:
                return None
            domain = mirror_hosts[0]
        raw = f"https://{domain}/{npub}/{repo}"
    elif "://" not in raw:
        scp_match = _SCP_PATTERN.match(raw)
        if not scp_match:
            return None
        raw = f"https://{scp_match.group(1)}/{scp_match.group(2)}"
    elif raw.lower().startswith(("ssh://", "git+ssh://")):
        parsed = urlparse(raw)
        if not parsed.hostname:
            return None
        raw = f"https://{parsed.hostname}{parsed.path}"
    elif raw.lower().startswith("git://"):
        raw = "https://" + raw[len("git://"):]

    parsed = urlparse(raw)
    scheme = parsed.scheme.lower()
    if scheme not in ("http", "https") or not parsed.hostname:
        return None

    host = parsed.hostname.lower()
    try:
        port = parsed.port
    except ValueError:
        return None
    netloc = f"[{host}]" if ":" in host else host
    if port:
        netloc = f"{netloc}:{port}"
    path = re.sub(r"/{2,}", "/", parsed.path).rstrip("/")
    normalized = f"{scheme}://{netloc}{path}"

    segments = [s for s in path.split("/") if s]
    if host in EXTERNAL_HOSTS and len(segments) >= 2:
        return SourceCandidate(
            url=normalized,
            kind=SourceKind.EXTERNAL,
            host=host,
            service=EXTERNAL_HOSTS[host],
            owner=segments[0],
            repo=_strip_git_suffix(segments[1]),
        )

    npub = segments[0] if segments and segments[0].lower().startswith("npub1") else None
    repo = _strip_git_suffix(segments[1]) if len(segments) >= 2 else None
    if npub is not None or is_mirror_host(host, mirror_hosts):
        return SourceCandidate(
            url=normalized,
            kind=SourceKind.MIRROR,
            host=host,
            owner=npub,
            repo=repo,
            npub=npub,
        )

    return SourceCandidate(
        url=normalized,
        kind=SourceKind.UNKNOWN,
        host=host,
        repo=_strip_git_suffix(segments[-1]) if segments else None,
    )


class SourceExpander:
    """
    Expands announced clone locations into ranked fetch candidates.

    Ordering: explicit locations before speculative mirror expansions; within
    each group external services, then mirrors, then unknown hosts. The list
    is capped at ``max_candidates``.
    """

    def __init__(self, config: ResolverConfig | None = None) -> None:
        self.config = config or ResolverConfig()

    def expand(
        self,
        clone_locations: Iterable[str],
        source_mirror: str | None = None,
    ) -> list[SourceCandidate]:
        """
        Build the candidate list.

        Args:
            clone_locations: Announced clone URLs
            source_mirror: Upstream URL on a hosting service, if announced

        Returns:
            Ranked candidates with ``priority`` set to their list position
        """
        mirror_hosts = self.config.mirror_hosts
        explicit: list[SourceCandidate] = []
        for url in clone_locations:
            candidate = parse_git_source(url, mirror_hosts)
            if candidate is None:
                logger.debug("Ignoring unparseable clone location %r", url)
                continue
            if is_loopback(candidate.host):
                logger.debug("Ignoring local clone location %s", candidate.url)
                continue
            explicit.append(candidate)

        if source_mirror:
            candidate = parse_git_source(source_mirror, mirror_hosts)
            if candidate is not None and candidate.kind is SourceKind.EXTERNAL:
                candidate = dataclasses.replace(candidate, url=_strip_git_suffix(candidate.url))
                explicit.append(candidate)

        speculative = self._synthesize_mirrors(explicit)

        seen: set[str] = set()
        unique: list[SourceCandidate] = []
        for candidate in explicit + speculative:
            key = dedupe_key(candidate.url)
            if key in seen:
                continue
            seen.add(key)
            unique.append(candidate)

        unique.sort(key=lambda c: (not c.explicit, _KIND_RANK[c.kind]))
        ranked = [
            dataclasses.replace(candidate, priority=index)
            for index, candidate in enumerate(unique[: self.config.max_candidates])
        ]
        if len(unique) > len(ranked):
            logger.debug("Capped %d candidates at %d", len(unique), len(ranked))
        return ranked

    def _synthesize_mirrors(self, candidates: list[SourceCandidate]) -> list[SourceCandidate]:
        known = [h.lower() for h in self.config.mirror_hosts]
        template = next(
            (
                c for c in candidates
                if c.kind is SourceKind.MIRROR and c.npub and c.repo and c.host in known
            ),
            None,
        )
        if template is None:
            return []

        synthesized = []
        for host in known:
            if host == template.host:
                continue
            synthesized.append(
                SourceCandidate(
                    url=f"https://{host}/{template.npub}/{template.repo}.git",
                    kind=SourceKind.MIRROR,
                    host=host,
                    owner=template.npub,
                    repo=template.repo,
                    npub=template.npub,
                    explicit=False,
                )
            )
        return synthesized


__all__ = [
    "SourceExpander",
    "parse_git_source",
    "is_loopback",
    "dedupe_key",
]
