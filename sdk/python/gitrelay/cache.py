"""
Repository cache.

``KeyValueStore`` is the only storage contract the resolver depends on: get,
put (which may fail with ``QuotaExceededError``), delete and key listing.
``RepositoryCache`` layers typed records on top and degrades to an
in-memory overlay when the store is full.
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Any

from gitrelay.exceptions import QuotaExceededError
from gitrelay.logging import get_logger, short_key
from gitrelay.types.announcements import RepositoryAnnouncement
from gitrelay.types.files import ResolvedTree, normalize_path
from gitrelay.types.storage import PendingEdit, StoredRepository

logger = get_logger()

KEY_PREFIX = "gitrelay"
REPO_PREFIX = f"{KEY_PREFIX}:repo:"
TREE_PREFIX = f"{KEY_PREFIX}:tree:"
EDITS_PREFIX = f"{KEY_PREFIX}:edits:"
ACTIVITY_KEY = f"{KEY_PREFIX}:activity"

MAX_ACTIVITY_RECORDS = 500


def repo_key(owner_key: str, repo_name: str) -> str:
    return f"{REPO_PREFIX}{owner_key}:{repo_name}"


def tree_key(owner_key: str, repo_name: str, branch: str) -> str:
    return f"{TREE_PREFIX}{owner_key}:{repo_name}:{branch}"


def edits_key(owner_key: str, repo_name: str) -> str:
    return f"{EDITS_PREFIX}{owner_key}:{repo_name}"


class KeyValueStore(ABC):
    """Abstract persistent key-value store holding JSON-compatible values."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the stored value, or None if absent."""
        pass

    @abstractmethod
    def put(self, key: str, value: Any) -> None:
        """
        Store a value.

        Raises:
            QuotaExceededError: If the store has no room for the value
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self) -> list[str]:
        pass


class MemoryStore(KeyValueStore):
    """
    In-process key-value store with an optional size quota.

    Values are stored as JSON text; the quota counts key and value
    characters, so callers see the same copy semantics as a real store.
    """

    def __init__(self, quota_bytes: int | None = None) -> None:
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}
        self._used = 0

    @property
    def used_bytes(self) -> int:
        return self._used

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def put(self, key: str, value: Any) -> None:
        encoded = json.dumps(value, separators=(",", ":"))
        previous = self._data.get(key)
        delta = len(key) + len(encoded)
        if previous is not None:
            delta -= len(key) + len(previous)
        if self.quota_bytes is not None and self._used + delta > self.quota_bytes:
            raise QuotaExceededError(key)
        self._data[key] = encoded
        self._used += delta

    def delete(self, key: str) -> None:
        previous = self._data.pop(key, None)
        if previous is not None:
            self._used -= len(key) + len(previous)

    def keys(self) -> list[str]:
        return list(self._data)


class RepositoryCache:
    """
    Typed access to cached repositories, trees, pending edits and activity.

    Writes that the store rejects for quota are kept in an in-memory overlay
    for the rest of the session; a full store never fails a resolution.
    """

    def __init__(self, store: KeyValueStore | None = None) -> None:
        self.store = store if store is not None else MemoryStore()
        self._overlay: dict[str, Any] = {}

    # Raw access

    def _get(self, key: str) -> Any | None:
        if key in self._overlay:
            return self._overlay[key]
        return self.store.get(key)

    def _put(self, key: str, value: Any) -> bool:
        """Write through to the store. Returns False if only the overlay took it."""
        try:
            self.store.put(key, value)
        except QuotaExceededError:
            logger.warning("Cache quota exceeded writing %s; keeping it in memory", key)
            self._overlay[key] = value
            return False
        self._overlay.pop(key, None)
        return True

    def _delete(self, key: str) -> None:
        self._overlay.pop(key, None)
        self.store.delete(key)

    def _keys(self, prefix: str) -> list[str]:
        keys = [k for k in self.store.keys() if k.startswith(prefix)]
        keys.extend(k for k in self._overlay if k.startswith(prefix) and k not in keys)
        return keys

    # Repositories

    def get_repository(self, owner_key: str, repo_name: str) -> StoredRepository | None:
        return StoredRepository.from_dict(self._get(repo_key(owner_key, repo_name)))

    def put_repository(self, record: StoredRepository) -> bool:
        return self._put(repo_key(record.owner_key, record.repo_name), record.to_dict())

    def list_repositories(self) -> list[StoredRepository]:
        records = []
        for key in self._keys(REPO_PREFIX):
            record = StoredRepository.from_dict(self._get(key))
            if record is not None:
                records.append(record)
        return records

    def put_announcement(self, announcement: RepositoryAnnouncement) -> StoredRepository:
        """
        Merge an announcement's metadata into the stored repository record.

        File lists and the unpublished-edits flag of an existing record are
        left untouched.

        Returns:
            The updated record
        """
        record = self.get_repository(announcement.owner_key, announcement.repo_name)
        if record is None:
            record = StoredRepository(owner_key=announcement.owner_key, repo_name=announcement.repo_name)
        record.contributors = list(announcement.contributors)
        record.clone_locations = list(announcement.clone_locations)
        record.relay_list = list(announcement.relay_list)
        record.source_mirror = announcement.source_mirror
        self.put_repository(record)
        return record

    def mark_unpublished_edits(self, owner_key: str, repo_name: str, value: bool = True) -> None:
        record = self.get_repository(owner_key, repo_name)
        if record is None:
            record = StoredRepository(owner_key=owner_key, repo_name=repo_name)
        record.has_unpublished_edits = value
        self.put_repository(record)

    # Trees

    def get_tree(self, owner_key: str, repo_name: str, branch: str) -> ResolvedTree | None:
        return ResolvedTree.from_dict(self._get(tree_key(owner_key, repo_name, branch)))

    def put_tree(self, tree: ResolvedTree) -> bool:
        """
        Store a resolved tree unless a newer round already wrote one.

        Remote trees live under their own key; the repository record keeps
        only locally authored file lists.

        Returns:
            True if the tree was accepted
        """
        existing = self.get_tree(tree.owner_key, tree.repo_name, tree.branch)
        if existing is not None and existing.round_id > tree.round_id:
            logger.debug(
                "Skipping tree write for %s/%s@%s: round %d is older than %d",
                short_key(tree.owner_key), tree.repo_name, tree.branch,
                tree.round_id, existing.round_id,
            )
            return False

        self._put(tree_key(tree.owner_key, tree.repo_name, tree.branch), tree.to_dict())
        return True

    def delete_tree(self, owner_key: str, repo_name: str, branch: str) -> None:
        self._delete(tree_key(owner_key, repo_name, branch))

    # Pending edits

    def get_pending_edits(self, owner_key: str, repo_name: str) -> dict[str, PendingEdit]:
        raw = self._get(edits_key(owner_key, repo_name))
        edits: dict[str, PendingEdit] = {}
        if isinstance(raw, list):
            for item in raw:
                edit = PendingEdit.from_dict(item)
                if edit is not None:
                    edits[edit.path] = edit
        return edits

    def get_pending_edit(self, owner_key: str, repo_name: str, path: str) -> PendingEdit | None:
        return self.get_pending_edits(owner_key, repo_name).get(normalize_path(path))

    def put_pending_edit(self, owner_key: str, repo_name: str, edit: PendingEdit) -> None:
        """Store a local edit and flag the repository as having unpublished edits."""
        if not edit.timestamp:
            edit.timestamp = time.time()
        edits = self.get_pending_edits(owner_key, repo_name)
        edits[edit.path] = edit
        self._put(edits_key(owner_key, repo_name), [e.to_dict() for e in edits.values()])
        self.mark_unpublished_edits(owner_key, repo_name, True)

    def clear_pending_edits(self, owner_key: str, repo_name: str) -> None:
        self._delete(edits_key(owner_key, repo_name))
        if self.get_repository(owner_key, repo_name) is not None:
            self.mark_unpublished_edits(owner_key, repo_name, False)

    # Activity

    def record_activity(self, owner_key: str, repo_name: str) -> None:
        """Remember that a repository by ``owner_key`` was seen."""
        activity = self._activity()
        activity = [a for a in activity if (a["ownerKey"], a["repoName"]) != (owner_key, repo_name)]
        activity.insert(0, {"ownerKey": owner_key, "repoName": repo_name, "at": time.time()})
        self._put(ACTIVITY_KEY, activity[:MAX_ACTIVITY_RECORDS])

    def activity_keys(self) -> list[str]:
        """Owner keys from observed activity, most recent first."""
        keys: list[str] = []
        for item in self._activity():
            if item["ownerKey"] not in keys:
                keys.append(item["ownerKey"])
        return keys

    def _activity(self) -> list[dict[str, Any]]:
        raw = self._get(ACTIVITY_KEY)
        if not isinstance(raw, list):
            return []
        return [
            item for item in raw
            if isinstance(item, dict)
            and isinstance(item.get("ownerKey"), str)
            and isinstance(item.get("repoName"), str)
        ]


__all__ = [
    "KeyValueStore",
    "MemoryStore",
    "RepositoryCache",
    "repo_key",
    "tree_key",
    "edits_key",
    "ACTIVITY_KEY",
]
