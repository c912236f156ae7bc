"""gitrelay testing utilities.

Provides a mock relay pool, a mock git backend and fixtures for testing
code that resolves repositories.
"""

from gitrelay.testing.fixtures import (
    create_mock_announcement,
    create_mock_candidate,
    make_announcement_event,
    make_key,
)
from gitrelay.testing.mock import MockBackend, MockCall, MockRelayPool, MockResponse

__all__ = [
    # Mocks
    "MockRelayPool",
    "MockBackend",
    "MockCall",
    "MockResponse",
    # Helper functions
    "make_key",
    "make_announcement_event",
    "create_mock_candidate",
    "create_mock_announcement",
]
