"""GitHub backend (REST API for trees, raw host for file bytes)."""

from urllib.parse import quote

from gitrelay.backends.base import HostedBackend
from gitrelay.exceptions import GitRelayError, NotFoundError
from gitrelay.transport import AsyncHTTPTransport
from gitrelay.types.files import EntryType, FileEntry

DEFAULT_RAW_URL = "https://raw.githubusercontent.com"


class GitHubBackend(HostedBackend):
    """
    Reads repositories hosted on GitHub.

    Trees come from ``GET /repos/{owner}/{repo}/git/trees/{branch}?recursive=1``;
    file bytes from the raw content host.
    """

    name = "github"

    def __init__(self, http: AsyncHTTPTransport, raw_url: str = DEFAULT_RAW_URL) -> None:
        super().__init__(http)
        self.raw_url = raw_url.rstrip("/")

    async def _list_tree(self, owner: str, repo: str, branch: str) -> list[FileEntry]:
        data = await self.http.get_json(
            f"/repos/{quote(owner)}/{quote(repo)}/git/trees/{quote(branch)}",
            params={"recursive": "1"},
        )
        entries: list[FileEntry] = []
        for item in data.get("tree", []) if isinstance(data, dict) else []:
            if not isinstance(item, dict) or not isinstance(item.get("path"), str):
                continue
            item_type = item.get("type")
            if item_type == "blob":
                size = item.get("size")
                entries.append(FileEntry(path=item["path"], size=size if isinstance(size, int) else None))
            elif item_type == "tree":
                entries.append(FileEntry(path=item["path"], type=EntryType.DIR))
        return entries

    async def _read_file(self, owner: str, repo: str, path: str, branch: str) -> bytes:
        return await self.http.get_bytes(
            f"{self.raw_url}/{quote(owner)}/{quote(repo)}/{quote(branch)}/{quote(path)}"
        )

    async def _default_branch(self, owner: str, repo: str) -> str | None:
        try:
            data = await self.http.get_json(f"/repos/{quote(owner)}/{quote(repo)}")
        except NotFoundError:
            raise
        except GitRelayError:
            return None
        branch = data.get("default_branch") if isinstance(data, dict) else None
        return branch if isinstance(branch, str) else None
