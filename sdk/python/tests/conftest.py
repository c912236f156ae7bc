"""Shared fixtures for the gitrelay test suite."""

from gitrelay.testing.conftest import *  # noqa: F401,F403
