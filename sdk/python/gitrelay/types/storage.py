"""Locally stored repository records and pending edits."""

from dataclasses import dataclass, field
from typing import Any

from gitrelay.types.announcements import Contributor, ContributorRole
from gitrelay.types.files import FileEntry, normalize_path


@dataclass
class StoredRepository:
    """A repository record held in the local cache."""

    owner_key: str
    repo_name: str
    contributors: list[Contributor] = field(default_factory=list)
    clone_locations: list[str] = field(default_factory=list)
    relay_list: list[str] = field(default_factory=list)
    source_mirror: str | None = None
    files_by_branch: dict[str, list[FileEntry]] = field(default_factory=dict)
    has_unpublished_edits: bool = False

    def files_for(self, branch: str) -> list[FileEntry]:
        return self.files_by_branch.get(branch, [])

    def to_dict(self) -> dict[str, Any]:
        return {
            "ownerKey": self.owner_key,
            "repoName": self.repo_name,
            "contributors": [
                {
                    "key": c.key,
                    "name": c.display_name,
                    "picture": c.avatar_url,
                    "weight": c.weight,
                    "role": c.role.value,
                    "login": c.login,
                }
                for c in self.contributors
            ],
            "clone": list(self.clone_locations),
            "relays": list(self.relay_list),
            "sourceMirror": self.source_mirror,
            "files": {
                branch: [entry.to_dict() for entry in entries]
                for branch, entries in self.files_by_branch.items()
            },
            "hasUnpublishedEdits": self.has_unpublished_edits,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "StoredRepository | None":
        if not isinstance(data, dict):
            return None
        owner_key = data.get("ownerKey")
        repo_name = data.get("repoName")
        if not isinstance(owner_key, str) or not isinstance(repo_name, str):
            return None

        contributors: list[Contributor] = []
        for item in data.get("contributors") or []:
            if not isinstance(item, dict):
                continue
            weight = item.get("weight")
            weight = weight if isinstance(weight, int) and not isinstance(weight, bool) else 0
            contributors.append(
                Contributor(
                    key=item.get("key") if isinstance(item.get("key"), str) else None,
                    display_name=item.get("name") if isinstance(item.get("name"), str) else None,
                    avatar_url=item.get("picture") if isinstance(item.get("picture"), str) else None,
                    weight=weight,
                    role=ContributorRole.parse(item.get("role")) or ContributorRole.from_weight(weight),
                    login=item.get("login") if isinstance(item.get("login"), str) else None,
                )
            )

        files_by_branch: dict[str, list[FileEntry]] = {}
        raw_files = data.get("files")
        if isinstance(raw_files, dict):
            for branch, entries in raw_files.items():
                if not isinstance(branch, str) or not isinstance(entries, list):
                    continue
                files_by_branch[branch] = [
                    entry for entry in (FileEntry.from_dict(e) for e in entries) if entry is not None
                ]

        source_mirror = data.get("sourceMirror")
        return cls(
            owner_key=owner_key,
            repo_name=repo_name,
            contributors=contributors,
            clone_locations=[u for u in data.get("clone") or [] if isinstance(u, str)],
            relay_list=[u for u in data.get("relays") or [] if isinstance(u, str)],
            source_mirror=source_mirror if isinstance(source_mirror, str) else None,
            files_by_branch=files_by_branch,
            has_unpublished_edits=data.get("hasUnpublishedEdits") is True,
        )


@dataclass
class PendingEdit:
    """A local, unpublished override for one file path."""

    path: str
    content: str
    is_binary: bool = False  # content is base64 when True
    mime_type: str | None = None
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        self.path = normalize_path(self.path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "content": self.content,
            "isBinary": self.is_binary,
            "mimeType": self.mime_type,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "PendingEdit | None":
        if not isinstance(data, dict):
            return None
        path = data.get("path")
        content = data.get("content")
        if not isinstance(path, str) or not isinstance(content, str):
            return None
        mime_type = data.get("mimeType")
        timestamp = data.get("timestamp")
        return cls(
            path=path,
            content=content,
            is_binary=data.get("isBinary") is True,
            mime_type=mime_type if isinstance(mime_type, str) else None,
            timestamp=float(timestamp) if isinstance(timestamp, (int, float)) else 0.0,
        )
