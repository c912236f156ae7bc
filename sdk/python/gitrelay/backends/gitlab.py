"""GitLab backend (API v4, paginated tree listing)."""

from urllib.parse import quote

from gitrelay.backends.base import HostedBackend
from gitrelay.exceptions import GitRelayError, NotFoundError
from gitrelay.types.files import EntryType, FileEntry

PER_PAGE = 100
MAX_PAGES = 100


def project_id(owner: str, repo: str) -> str:
    """URL-encoded ``owner/repo`` project path."""
    return quote(f"{owner}/{repo}", safe="")


class GitLabBackend(HostedBackend):
    """
    Reads repositories hosted on GitLab.

    The tree endpoint is paginated; pages are followed using the
    ``X-Total-Pages`` response header.
    """

    name = "gitlab"

    async def _list_tree(self, owner: str, repo: str, branch: str) -> list[FileEntry]:
        entries: list[FileEntry] = []
        page = 1
        total_pages = 1
        while page <= min(total_pages, MAX_PAGES):
            response = await self.http.get(
                f"/api/v4/projects/{project_id(owner, repo)}/repository/tree",
                params={"ref": branch, "recursive": "true", "per_page": PER_PAGE, "page": page},
            )
            try:
                total_pages = int(response.headers.get("X-Total-Pages", "1"))
            except ValueError:
                total_pages = 1

            try:
                items = response.json()
            except ValueError:
                items = []
            for item in items if isinstance(items, list) else []:
                if not isinstance(item, dict) or not isinstance(item.get("path"), str):
                    continue
                if item.get("type") == "tree":
                    entries.append(FileEntry(path=item["path"], type=EntryType.DIR))
                elif item.get("type") == "blob":
                    entries.append(FileEntry(path=item["path"]))
            page += 1
        return entries

    async def _read_file(self, owner: str, repo: str, path: str, branch: str) -> bytes:
        return await self.http.get_bytes(
            f"/api/v4/projects/{project_id(owner, repo)}/repository/files/{quote(path, safe='')}/raw",
            params={"ref": branch},
        )

    async def _default_branch(self, owner: str, repo: str) -> str | None:
        try:
            data = await self.http.get_json(f"/api/v4/projects/{project_id(owner, repo)}")
        except NotFoundError:
            raise
        except GitRelayError:
            return None
        branch = data.get("default_branch") if isinstance(data, dict) else None
        return branch if isinstance(branch, str) else None
