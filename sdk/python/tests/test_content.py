"""
Tests for file content resolution.

Feature: gitrelay
"""

import base64

import httpx
import pytest

from gitrelay.backends.base import BackendRouter
from gitrelay.backends.mirror import MirrorBridgeBackend
from gitrelay.cache import RepositoryCache
from gitrelay.config import ResolverConfig
from gitrelay.content import FileContentResolver, build_content, is_binary_content
from gitrelay.context import ResolutionContext
from gitrelay.exceptions import NotFoundError
from gitrelay.testing import MockBackend, create_mock_candidate, make_key
from gitrelay.transport import AsyncHTTPTransport
from gitrelay.tree import TreeFetchResult
from gitrelay.types.files import FileEntry
from gitrelay.types.identity import RepositoryIdentity
from gitrelay.types.sources import FetchState, FetchStatus
from gitrelay.types.storage import PendingEdit

OWNER = make_key("owner")
PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"

RECORD = create_mock_candidate("https://relay.ngit.dev/npub1alice/demo.git")
SECOND = create_mock_candidate("https://github.com/alice/demo")
UNTRIED = create_mock_candidate("https://gitlab.com/alice/demo")
OTHER_MIRROR = create_mock_candidate("https://gitnostr.com/npub1alice/demo.git")


def context(branch: str = "main") -> ResolutionContext:
    return ResolutionContext(
        identity=RepositoryIdentity(OWNER, "demo", OWNER),
        owner_key=OWNER,
        repo_name="demo",
        branch=branch,
        round_id=1,
    )


def tree_result() -> TreeFetchResult:
    return TreeFetchResult(
        files=[FileEntry(path="README.md")],
        source_of_record=RECORD,
        statuses=[
            FetchStatus(candidate=UNTRIED, state=FetchState.FAILED, error="Server unavailable"),
            FetchStatus(candidate=RECORD, state=FetchState.SUCCESS),
            FetchStatus(candidate=SECOND, state=FetchState.SUCCESS),
        ],
        successful_sources=[RECORD, SECOND],
        complete=True,
    )


def mirror_result() -> TreeFetchResult:
    """A round where two mirrors and GitHub all served the tree."""
    return TreeFetchResult(
        files=[FileEntry(path="README.md")],
        source_of_record=RECORD,
        statuses=[
            FetchStatus(candidate=RECORD, state=FetchState.SUCCESS),
            FetchStatus(candidate=OTHER_MIRROR, state=FetchState.SUCCESS),
            FetchStatus(candidate=SECOND, state=FetchState.SUCCESS),
        ],
        successful_sources=[RECORD, OTHER_MIRROR, SECOND],
        complete=True,
    )


async def resolve(resolver: FileContentResolver, path: str, tree_files=(), result=None):
    return await resolver.resolve(path, "main", context(), list(tree_files), result)


class TestPriorityChain:
    @pytest.mark.asyncio
    async def test_embedded_content_needs_no_network(self) -> None:
        backend = MockBackend()
        resolver = FileContentResolver(backend, RepositoryCache())

        content = await resolve(
            resolver, "README.md", [FileEntry(path="README.md", content="# Demo")], tree_result()
        )

        assert content.content == "# Demo"
        assert content.source == "embedded"
        assert backend.get_calls() == []

    @pytest.mark.asyncio
    async def test_embedded_binary_content(self) -> None:
        encoded = base64.b64encode(PNG_BYTES).decode()
        resolver = FileContentResolver(MockBackend(), RepositoryCache())

        content = await resolve(resolver, "logo.png", [FileEntry(path="logo.png", content=encoded, is_binary=True)])

        assert content.binary_data_url == f"data:image/png;base64,{encoded}"
        assert content.content is None

    @pytest.mark.asyncio
    async def test_pending_edit_beats_remote_sources(self) -> None:
        backend = MockBackend()
        backend.configure_file(RECORD.url, "README.md", b"remote")
        cache = RepositoryCache()
        cache.put_pending_edit(OWNER, "demo", PendingEdit(path="./README.md", content="local"))
        resolver = FileContentResolver(backend, cache)

        content = await resolve(resolver, "README.md", result=tree_result())

        assert content.content == "local"
        assert content.source == "local"
        assert not backend.was_called("fetch_file")

    @pytest.mark.asyncio
    async def test_binary_pending_edit(self) -> None:
        cache = RepositoryCache()
        encoded = base64.b64encode(PNG_BYTES).decode()
        cache.put_pending_edit(
            OWNER, "demo", PendingEdit(path="logo.png", content=encoded, is_binary=True, mime_type="image/png")
        )
        content = await resolve(FileContentResolver(MockBackend(), cache), "logo.png")
        assert content.binary_data_url == f"data:image/png;base64,{encoded}"

    @pytest.mark.asyncio
    async def test_bridge_cache_before_sources(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"content": "from bridge", "isBinary": False})

        backend = MockBackend()
        async with AsyncHTTPTransport("https://bridge.example", transport=httpx.MockTransport(handler)) as http:
            resolver = FileContentResolver(backend, RepositoryCache(), MirrorBridgeBackend(http))
            content = await resolver.resolve("README.md", "main", context(), [], tree_result())

        assert content.content == "from bridge"
        assert content.source == "bridge"
        assert requests[0].url.params["ownerPubkey"] == OWNER
        assert not backend.was_called("fetch_file")

    @pytest.mark.asyncio
    async def test_sources_in_success_order_then_candidates(self) -> None:
        backend = MockBackend()
        backend.configure_file(SECOND.url, "docs/guide.md", "guide")
        backend.configure_file(UNTRIED.url, "docs/guide.md", "other")
        resolver = FileContentResolver(backend, RepositoryCache())

        content = await resolve(resolver, "docs/guide.md", result=tree_result())

        assert content.content == "guide"
        assert content.source == SECOND.url
        assert [c.args[0] for c in backend.get_calls("fetch_file")] == [RECORD.url, SECOND.url]

    @pytest.mark.asyncio
    async def test_falls_through_to_untried_candidates(self) -> None:
        backend = MockBackend()
        backend.configure_file(UNTRIED.url, "LICENSE", b"MIT")
        content = await resolve(FileContentResolver(backend, RepositoryCache()), "LICENSE", result=tree_result())
        assert content.content == "MIT"
        assert content.source == UNTRIED.url

    @pytest.mark.asyncio
    async def test_slow_source_is_skipped(self) -> None:
        backend = MockBackend()
        backend.configure_file(RECORD.url, "a.txt", "slow", delay=1.0)
        backend.configure_file(SECOND.url, "a.txt", "fast")
        resolver = FileContentResolver(backend, RepositoryCache(), config=ResolverConfig(source_timeout=0.1))

        assert (await resolve(resolver, "a.txt", result=tree_result())).content == "fast"

    @pytest.mark.asyncio
    async def test_binary_remote_content_becomes_data_url(self) -> None:
        backend = MockBackend()
        backend.configure_file(RECORD.url, "logo.png", PNG_BYTES)

        content = await resolve(FileContentResolver(backend, RepositoryCache()), "logo.png", result=tree_result())

        assert content.is_binary
        assert content.binary_data_url == "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()


class TestSourceErrors:
    @pytest.mark.asyncio
    async def test_unexpected_backend_error_moves_to_next_source(self) -> None:
        backend = MockBackend()
        backend.configure_file(RECORD.url, "a.txt", error=ValueError("malformed payload"))
        backend.configure_file(SECOND.url, "a.txt", "fine")

        content = await resolve(FileContentResolver(backend, RepositoryCache()), "a.txt", result=tree_result())

        assert content.content == "fine"
        assert content.source == SECOND.url

    @pytest.mark.asyncio
    async def test_unexpected_errors_everywhere_end_in_not_found(self) -> None:
        backend = MockBackend()
        for candidate in (RECORD, SECOND, UNTRIED):
            backend.configure_file(candidate.url, "a.txt", error=TypeError("bad payload"))

        with pytest.raises(NotFoundError) as exc_info:
            await resolve(FileContentResolver(backend, RepositoryCache()), "a.txt", result=tree_result())
        assert exc_info.value.code == "FILE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unexpected_bridge_error_falls_through(self) -> None:
        backend = MockBackend()
        backend.configure_file(RECORD.url, "a.bin", PNG_BYTES)

        class BrokenBridge(MirrorBridgeBackend):
            async def read_cached(self, owner_key, repo_name, path, branch):
                raise ValueError("malformed payload")

        not_found = httpx.MockTransport(lambda request: httpx.Response(404))
        async with AsyncHTTPTransport("https://bridge.example", transport=not_found) as http:
            resolver = FileContentResolver(backend, RepositoryCache(), BrokenBridge(http))
            content = await resolver.resolve("a.bin", "main", context(), [], tree_result())

        assert content.source == RECORD.url


class TestBridgeRequests:
    @pytest.mark.asyncio
    async def test_bridge_is_asked_once_per_read(self) -> None:
        """Mirror candidates share the bridge clone already asked for the repository."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(404, json={"error": "not found"})

        github = MockBackend()
        github.configure_file(SECOND.url, "README.md", "from github")

        async with AsyncHTTPTransport("https://bridge.example", transport=httpx.MockTransport(handler)) as http:
            mirror = MirrorBridgeBackend(http)
            router = BackendRouter(mirror=mirror, services={"github": github})
            resolver = FileContentResolver(router, RepositoryCache(), mirror)
            content = await resolver.resolve("README.md", "main", context(), [], mirror_result())

        assert content.source == SECOND.url
        assert len(requests) == 1
        assert [c.args[0] for c in github.get_calls("fetch_file")] == [SECOND.url]

    @pytest.mark.asyncio
    async def test_missing_file_costs_one_bridge_request_per_attempt(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(404, json={"error": "not found"})

        async with AsyncHTTPTransport("https://bridge.example", transport=httpx.MockTransport(handler)) as http:
            mirror = MirrorBridgeBackend(http)
            resolver = FileContentResolver(BackendRouter(mirror=mirror), RepositoryCache(), mirror)
            for _ in range(3):
                with pytest.raises(NotFoundError):
                    await resolver.resolve("missing.txt", "main", context(), [], mirror_result())

        # two network attempts, then the miss is remembered
        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_router_mirror_without_bridge_step(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(404, json={"error": "not found"})

        async with AsyncHTTPTransport("https://bridge.example", transport=httpx.MockTransport(handler)) as http:
            resolver = FileContentResolver(BackendRouter(mirror=MirrorBridgeBackend(http)), RepositoryCache())
            with pytest.raises(NotFoundError):
                await resolver.resolve("missing.txt", "main", context(), [], mirror_result())

        assert len(requests) == 1


class TestNotFound:
    @pytest.mark.asyncio
    async def test_missing_path_is_retried_at_most_once(self) -> None:
        backend = MockBackend()
        resolver = FileContentResolver(backend, RepositoryCache())
        result = TreeFetchResult(source_of_record=RECORD, successful_sources=[RECORD],
                                 statuses=[FetchStatus(candidate=RECORD, state=FetchState.SUCCESS)])

        for _ in range(4):
            with pytest.raises(NotFoundError):
                await resolve(resolver, "missing.txt", result=result)

        assert backend.call_count("fetch_file") == 2

    @pytest.mark.asyncio
    async def test_other_paths_are_unaffected(self) -> None:
        backend = MockBackend()
        backend.configure_file(RECORD.url, "present.txt", "here")
        resolver = FileContentResolver(backend, RepositoryCache())
        result = TreeFetchResult(source_of_record=RECORD, successful_sources=[RECORD])

        for _ in range(3):
            with pytest.raises(NotFoundError):
                await resolve(resolver, "missing.txt", result=result)
        assert (await resolve(resolver, "present.txt", result=result)).content == "here"

    @pytest.mark.asyncio
    async def test_no_sources(self) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await resolve(FileContentResolver(MockBackend(), RepositoryCache()), "README.md")
        assert exc_info.value.code == "FILE_NOT_FOUND"


class TestBinaryDetection:
    def test_text_extensions_are_text(self) -> None:
        assert not is_binary_content(b"<svg>\x01</svg>", "icon.svg")

    def test_nul_byte(self) -> None:
        assert is_binary_content(b"abc\x00def", "data.bin")

    def test_invalid_utf8(self) -> None:
        assert is_binary_content(b"\xff\xfe\xfd", "blob")

    def test_control_characters(self) -> None:
        assert is_binary_content(b"abc\x07", "blob")

    def test_plain_text(self) -> None:
        assert not is_binary_content("héllo\n\tworld\r\n".encode(), "NOTES")

    def test_build_content_keeps_strings(self) -> None:
        content = build_content("x.bin", "already text", "src", "main")
        assert content.content == "already text"
        assert not content.is_binary

    def test_unknown_mime_type(self) -> None:
        content = build_content("blob", b"\x00\x01", "src", "main")
        assert content.binary_data_url.startswith("data:application/octet-stream;base64,")
