"""
Pytest plugin for gitrelay testing fixtures.

This module re-exports all fixtures from fixtures.py so they can be
discovered by pytest.

To use these fixtures in your tests, import them into your conftest.py:

    from gitrelay.testing.conftest import *  # noqa: F401,F403

Or, in a root-level conftest.py:

    pytest_plugins = ["gitrelay.testing.conftest"]
"""

# Re-export all fixtures for pytest discovery
from gitrelay.testing.fixtures import (
    fast_config,
    memory_store,
    mock_backend,
    mock_relay_pool,
    other_key,
    owner_key,
    repo_name,
    repository_cache,
    sample_announcement,
    sample_announcement_event,
)

__all__ = [
    "owner_key",
    "other_key",
    "repo_name",
    "mock_relay_pool",
    "mock_backend",
    "memory_store",
    "repository_cache",
    "fast_config",
    "sample_announcement_event",
    "sample_announcement",
]
