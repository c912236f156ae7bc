"""Gitea/Forgejo backend, used for Codeberg."""

from urllib.parse import quote

from gitrelay.backends.base import HostedBackend
from gitrelay.exceptions import GitRelayError, NotFoundError
from gitrelay.types.files import EntryType, FileEntry

PER_PAGE = 1000
MAX_PAGES = 50


class GiteaBackend(HostedBackend):
    """
    Reads repositories from a Gitea-compatible API (``/api/v1``).

    Recursive trees may be truncated; further pages are requested while the
    response says so.
    """

    name = "gitea"

    async def _list_tree(self, owner: str, repo: str, branch: str) -> list[FileEntry]:
        entries: list[FileEntry] = []
        page = 1
        while page <= MAX_PAGES:
            data = await self.http.get_json(
                f"/api/v1/repos/{quote(owner)}/{quote(repo)}/git/trees/{quote(branch)}",
                params={"recursive": "true", "per_page": PER_PAGE, "page": page},
            )
            if not isinstance(data, dict):
                break
            for item in data.get("tree") or []:
                if not isinstance(item, dict) or not isinstance(item.get("path"), str):
                    continue
                if item.get("type") == "tree":
                    entries.append(FileEntry(path=item["path"], type=EntryType.DIR))
                elif item.get("type") == "blob":
                    size = item.get("size")
                    entries.append(FileEntry(path=item["path"], size=size if isinstance(size, int) else None))
            if data.get("truncated") is not True:
                break
            page += 1
        return entries

    async def _read_file(self, owner: str, repo: str, path: str, branch: str) -> bytes:
        return await self.http.get_bytes(
            f"/api/v1/repos/{quote(owner)}/{quote(repo)}/raw/{quote(branch)}/{quote(path)}",
        )

    async def _default_branch(self, owner: str, repo: str) -> str | None:
        try:
            data = await self.http.get_json(f"/api/v1/repos/{quote(owner)}/{quote(repo)}")
        except NotFoundError:
            raise
        except GitRelayError:
            return None
        branch = data.get("default_branch") if isinstance(data, dict) else None
        return branch if isinstance(branch, str) else None
