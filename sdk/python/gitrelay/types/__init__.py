"""gitrelay type definitions.

This module exports all data model types used by the resolver.
"""

from gitrelay.types.announcements import Contributor, ContributorRole, RepositoryAnnouncement
from gitrelay.types.files import EntryType, FileContent, FileEntry, ResolvedTree, normalize_path
from gitrelay.types.identity import EntityKind, RepositoryIdentity
from gitrelay.types.sources import (
    FetchState,
    FetchStatus,
    SourceCandidate,
    SourceKind,
    StatusUpdate,
)
from gitrelay.types.storage import PendingEdit, StoredRepository

__all__ = [
    # Identity types
    "EntityKind",
    "RepositoryIdentity",
    # Announcement types
    "Contributor",
    "ContributorRole",
    "RepositoryAnnouncement",
    # File types
    "EntryType",
    "FileEntry",
    "FileContent",
    "ResolvedTree",
    "normalize_path",
    # Source types
    "SourceKind",
    "SourceCandidate",
    "FetchState",
    "FetchStatus",
    "StatusUpdate",
    # Storage types
    "StoredRepository",
    "PendingEdit",
]
