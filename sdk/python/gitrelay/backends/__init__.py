"""
Git-hosting backends.

Each backend lists flat file trees and reads blobs for one kind of host.
"""

from gitrelay.backends.base import BackendRouter, GitBackend, HostedBackend, add_parent_dirs, branch_order
from gitrelay.backends.gitea import GiteaBackend
from gitrelay.backends.github import GitHubBackend
from gitrelay.backends.gitlab import GitLabBackend
from gitrelay.backends.mirror import MirrorBridgeBackend

__all__ = [
    "GitBackend",
    "HostedBackend",
    "BackendRouter",
    "MirrorBridgeBackend",
    "GitHubBackend",
    "GitLabBackend",
    "GiteaBackend",
    "add_parent_dirs",
    "branch_order",
]
