"""gitrelay exception classes."""


class GitRelayError(Exception):
    """Base exception for all gitrelay errors."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


class ConfigurationError(GitRelayError):
    """Raised when resolver configuration is invalid or missing."""

    def __init__(self, message: str) -> None:
        super().__init__("CONFIGURATION_ERROR", message)


class DecodeError(GitRelayError):
    """Raised when an identity (npub, hex key) is malformed."""

    def __init__(self, message: str) -> None:
        super().__init__("DECODE_ERROR", message)


class NotFoundError(GitRelayError):
    """Raised when no announcement, tree or file exists after exhausting all sources."""

    pass


class SourceUnavailableError(GitRelayError):
    """Raised when a single backend fails.

    Never fatal for a resolution round: the fetchers turn it into a
    ``failed`` status for that source.
    """

    pass


class RateLimitedError(SourceUnavailableError):
    """Raised when a backend rate limits us."""

    def __init__(self, code: str, message: str, retry_after: int) -> None:
        super().__init__(code, message)
        self.retry_after = retry_after


class ServerError(SourceUnavailableError):
    """Raised on backend server errors (5xx) and connection failures."""

    pass


class QuotaExceededError(GitRelayError):
    """Raised by a key-value store when a write is rejected for lack of space."""

    def __init__(self, key: str) -> None:
        super().__init__("QUOTA_EXCEEDED", f"Storage quota exceeded writing {key}")
        self.key = key


class CorruptedError(GitRelayError):
    """Raised when an announcement's ownership fields are inconsistent.

    A corrupted repository must be refused outright, never partially shown.
    """

    def __init__(self, message: str, event_id: str | None = None) -> None:
        super().__init__("CORRUPTED", message)
        self.event_id = event_id
