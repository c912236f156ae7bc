"""
Resolver configuration.

Timeouts, fan-out caps, relay lists and the known decentralized-mirror
hosts. ``ResolverConfig.from_env`` reads overrides from ``GITRELAY_*``
environment variables.
"""

import os
from dataclasses import dataclass, field

from gitrelay.exceptions import ConfigurationError

# Hosts that are both relays and git servers. Listed in preference order.
KNOWN_MIRROR_HOSTS: tuple[str, ...] = (
    "relay.ngit.dev",
    "ngit-relay.nostrver.se",
    "gitnostr.com",
    "ngit.danconwaydev.com",
    "git.shakespeare.diy",
    "git-01.uid.ovh",
    "git-02.uid.ovh",
)

# Conventional hosting services and the backend family serving them.
EXTERNAL_HOSTS: dict[str, str] = {
    "github.com": "github",
    "gitlab.com": "gitlab",
    "codeberg.org": "codeberg",
}

DEFAULT_RELAYS: tuple[str, ...] = (
    "wss://relay.ngit.dev",
    "wss://ngit-relay.nostrver.se",
    "wss://gitnostr.com",
    "wss://relay.damus.io",
    "wss://nos.lol",
    "wss://relay.nostr.band",
)

# Branches tried, in order, after the requested one on external hosts.
FALLBACK_BRANCHES: tuple[str, ...] = ("main", "master")


@dataclass
class ResolverConfig:
    """Tunables for one resolver instance."""

    relays: list[str] = field(default_factory=lambda: list(DEFAULT_RELAYS))
    mirror_hosts: list[str] = field(default_factory=lambda: list(KNOWN_MIRROR_HOSTS))
    bridge_url: str | None = None  # mirror bridge serving locally cloned repos
    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    gitlab_api_url: str = "https://gitlab.com"
    codeberg_api_url: str = "https://codeberg.org"
    max_candidates: int = 12
    max_relays: int = 16
    http_timeout: float = 15.0
    source_timeout: float = 8.0  # per candidate
    race_timeout: float = 10.0  # whole multi-source race
    event_grace: float = 3.0  # after the first usable record
    eose_grace: float = 1.5  # for late records after every relay reported end-of-stream
    relay_timeout: float = 12.0  # whole relay query
    handle_timeout: float = 5.0  # name-service lookups
    verify_event_ids: bool = True
    max_not_found_retries: int = 1

    def __post_init__(self) -> None:
        if self.max_candidates < 1:
            raise ConfigurationError("max_candidates must be at least 1")
        if self.max_relays < 1:
            raise ConfigurationError("max_relays must be at least 1")
        for name in ("http_timeout", "source_timeout", "race_timeout", "relay_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        for name in ("event_grace", "eose_grace"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")

    @classmethod
    def from_env(cls) -> "ResolverConfig":
        """
        Create a configuration from environment variables.

        Environment variables:
            GITRELAY_RELAYS: Comma-separated relay URLs (optional)
            GITRELAY_BRIDGE_URL: Mirror bridge base URL (optional)
            GITRELAY_GITHUB_TOKEN: GitHub API token (optional)
            GITRELAY_MAX_CANDIDATES: Fan-out cap (optional, default: 12)
            GITRELAY_SOURCE_TIMEOUT: Per-source timeout in seconds (optional)
            GITRELAY_RACE_TIMEOUT: Multi-source race timeout in seconds (optional)
            GITRELAY_EVENT_GRACE: Grace window after first record in seconds (optional)
            GITRELAY_RELAY_TIMEOUT: Relay query timeout in seconds (optional)

        Raises:
            ConfigurationError: If a numeric variable does not parse
        """
        kwargs: dict[str, object] = {}

        relays = os.environ.get("GITRELAY_RELAYS")
        if relays:
            kwargs["relays"] = [r.strip() for r in relays.split(",") if r.strip()]

        bridge_url = os.environ.get("GITRELAY_BRIDGE_URL")
        if bridge_url:
            kwargs["bridge_url"] = bridge_url

        token = os.environ.get("GITRELAY_GITHUB_TOKEN")
        if token:
            kwargs["github_token"] = token

        max_candidates = os.environ.get("GITRELAY_MAX_CANDIDATES")
        if max_candidates:
            try:
                kwargs["max_candidates"] = int(max_candidates)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid GITRELAY_MAX_CANDIDATES: {max_candidates}"
                ) from e

        for var, attr in (
            ("GITRELAY_SOURCE_TIMEOUT", "source_timeout"),
            ("GITRELAY_RACE_TIMEOUT", "race_timeout"),
            ("GITRELAY_EVENT_GRACE", "event_grace"),
            ("GITRELAY_RELAY_TIMEOUT", "relay_timeout"),
        ):
            value = os.environ.get(var)
            if value:
                try:
                    kwargs[attr] = float(value)
                except ValueError as e:
                    raise ConfigurationError(f"Invalid {var}: {value}") from e

        return cls(**kwargs)  # type: ignore[arg-type]
