"""File tree data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EntryType(str, Enum):
    FILE = "file"
    DIR = "dir"


def normalize_path(path: str) -> str:
    """Forward slashes, relative to the repository root, no leading slash."""
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    path = path.lstrip("/")
    while "//" in path:
        path = path.replace("//", "/")
    return path.rstrip("/")


@dataclass(frozen=True)
class FileEntry:
    """An entry in a repository's flat file tree."""

    path: str
    type: EntryType = EntryType.FILE
    size: int | None = None
    content: str | None = None  # inline content carried by the announcement
    is_binary: bool | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", normalize_path(self.path))

    @classmethod
    def from_dict(cls, data: Any) -> "FileEntry | None":
        """Build an entry from JSON, returning None for unusable shapes."""
        if not isinstance(data, dict):
            return None
        path = data.get("path")
        if not isinstance(path, str) or not normalize_path(path):
            return None
        raw_type = data.get("type")
        entry_type = EntryType.DIR if raw_type in ("dir", "tree") else EntryType.FILE
        size = data.get("size")
        content = data.get("content")
        is_binary = data.get("isBinary", data.get("is_binary"))
        return cls(
            path=path,
            type=entry_type,
            size=size if isinstance(size, int) and not isinstance(size, bool) else None,
            content=content if isinstance(content, str) else None,
            is_binary=is_binary if isinstance(is_binary, bool) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": self.path, "type": self.type.value}
        if self.size is not None:
            data["size"] = self.size
        if self.content is not None:
            data["content"] = self.content
        if self.is_binary is not None:
            data["isBinary"] = self.is_binary
        return data


@dataclass
class ResolvedTree:
    """Per-(owner, repo, branch) cache record of the tree of record."""

    owner_key: str
    repo_name: str
    branch: str
    files: list[FileEntry] = field(default_factory=list)
    source_of_record: str | None = None
    fetched_at: float = 0.0
    round_id: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ownerKey": self.owner_key,
            "repoName": self.repo_name,
            "branch": self.branch,
            "files": [entry.to_dict() for entry in self.files],
            "sourceOfRecord": self.source_of_record,
            "fetchedAt": self.fetched_at,
            "roundId": self.round_id,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ResolvedTree | None":
        if not isinstance(data, dict):
            return None
        owner_key = data.get("ownerKey")
        repo_name = data.get("repoName")
        branch = data.get("branch")
        if not all(isinstance(v, str) for v in (owner_key, repo_name, branch)):
            return None
        raw_files = data.get("files")
        files = [
            entry
            for entry in (FileEntry.from_dict(item) for item in (raw_files if isinstance(raw_files, list) else []))
            if entry is not None
        ]
        source = data.get("sourceOfRecord")
        fetched_at = data.get("fetchedAt")
        round_id = data.get("roundId")
        return cls(
            owner_key=owner_key,
            repo_name=repo_name,
            branch=branch,
            files=files,
            source_of_record=source if isinstance(source, str) else None,
            fetched_at=float(fetched_at) if isinstance(fetched_at, (int, float)) else 0.0,
            round_id=round_id if isinstance(round_id, int) else 0,
        )


@dataclass
class FileContent:
    """Resolved content of one file; exactly one of content/binary_data_url is set."""

    path: str
    content: str | None = None
    binary_data_url: str | None = None
    source: str | None = None
    branch: str | None = None

    @property
    def is_binary(self) -> bool:
        return self.binary_data_url is not None
