"""GitHub crawler tests using an in-process mock of the REST API."""

import base64
import os

import httpx
import pytest

from repodocs.repo.crawler import CrawlStats, GitHubCrawler, RateLimitInfo, crawl_repository
from repodocs.repo.file_filter import FileFilter


def blob(text: bytes | str) -> dict:
    data = text.encode() if isinstance(text, str) else text
    return {"content": base64.b64encode(data).decode(), "encoding": "base64"}


class FakeGitHub:
    """Serves a repository tree and blobs, recording every requested path."""

    def __init__(self, tree, blobs, default_branch="main"):
        self.tree = tree
        self.blobs = blobs
        self.default_branch = default_branch
        self.requested: list[str] = []
        self.blob_responses: dict[str, httpx.Response] = {}
        self.tree_response: httpx.Response | None = None
        self.repo_response: httpx.Response | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requested.append(path)
        if path == "/repos/octo/demo":
            return self.repo_response or httpx.Response(
                200, json={"default_branch": self.default_branch}
            )
        if path.startswith("/repos/octo/demo/git/trees/"):
            return self.tree_response or httpx.Response(
                200, json={"tree": self.tree, "truncated": False}
            )
        if path.startswith("/repos/octo/demo/git/blobs/"):
            sha = path.rsplit("/", 1)[-1]
            if sha in self.blob_responses:
                return self.blob_responses[sha]
            return httpx.Response(200, json=self.blobs[sha])
        return httpx.Response(404, json={"message": "Not Found"})

    def crawler(self, **kwargs) -> GitHubCrawler:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        kwargs.setdefault("file_filter", FileFilter(max_file_size_kb=1))
        return GitHubCrawler(client=client, **kwargs)


def entry(path, sha, size=100):
    return {"path": path, "type": "blob", "sha": sha, "size": size}


@pytest.fixture
def github():
    tree = [
        {"path": "src", "type": "tree", "sha": "t0"},
        entry("src/index.ts", "s1"),
        entry("src/util.ts", "s2"),
        entry("node_modules/lib/index.js", "s3"),
        entry("src/app.test.ts", "s4"),
        entry("README.md", "s5"),
    ]
    blobs = {
        "s1": blob("export const main = () => 1;\n"),
        "s2": blob("export function helper() {}\n"),
        "s3": blob("module.exports = {};\n"),
        "s4": blob("test('x', () => {});\n"),
        "s5": blob("# Demo\n"),
    }
    return FakeGitHub(tree, blobs)


async def test_crawl_downloads_included_files(github):
    """Included files are downloaded in tree order with their language."""
    result = await github.crawler().crawl("https://github.com/octo/demo")

    assert result.success
    assert [f.path for f in result.files] == ["src/index.ts", "src/util.ts", "README.md"]
    assert result.files[0].language == "ts"
    assert result.files[0].content == "export const main = () => 1;\n"
    assert result.stats.default_branch == "main"
    assert result.stats.languages == {"ts": 2, "md": 1}


async def test_excluded_files_are_never_fetched(github):
    """Excluded paths are filtered before any content request."""
    result = await github.crawler().crawl("octo/demo")

    assert "/repos/octo/demo/git/blobs/s3" not in github.requested
    assert "/repos/octo/demo/git/blobs/s4" not in github.requested
    assert result.stats.excluded_count == 2


async def test_branch_in_url_skips_default_branch_lookup(github):
    """A ref in the URL is used directly for the tree request."""
    await github.crawler().crawl("https://github.com/octo/demo/tree/develop")

    assert "/repos/octo/demo" not in github.requested
    assert "/repos/octo/demo/git/trees/develop" in github.requested


async def test_path_prefix_limits_files(github):
    """A sub-path in the URL restricts the crawl to that directory."""
    result = await github.crawler().crawl("https://github.com/octo/demo/tree/main/src")

    assert [f.path for f in result.files] == ["src/index.ts", "src/util.ts"]


async def test_oversized_and_binary_files_are_skipped(github):
    """Size limits use tree metadata; binary content is detected after download."""
    github.tree.append(entry("src/big.ts", "s6", size=4096))
    github.tree.append(entry("src/data.json", "s7"))
    github.blobs["s7"] = blob(b"{\x00\x01}")

    result = await github.crawler().crawl("octo/demo")

    reasons = {s.path: s.reason for s in result.stats.skipped_files}
    assert reasons["src/big.ts"] == "File too large"
    assert reasons["src/data.json"] == "Binary content"
    assert "/repos/octo/demo/git/blobs/s6" not in github.requested


async def test_single_blob_failure_does_not_fail_crawl(github):
    """A failed blob is recorded as skipped and the crawl continues."""
    github.blob_responses["s2"] = httpx.Response(500, text="boom")

    result = await github.crawler().crawl("octo/demo")

    assert result.success
    assert [f.path for f in result.files] == ["src/index.ts", "README.md"]
    assert result.stats.skipped_count == 1
    assert result.stats.skipped_files[0].path == "src/util.ts"


async def test_rate_limit_on_blob_skips_remaining(github):
    """After a rate-limited blob, the remaining blobs are skipped without requests."""
    github.blob_responses["s1"] = httpx.Response(
        403,
        json={"message": "API rate limit exceeded"},
        headers={"x-ratelimit-remaining": "0", "x-ratelimit-limit": "60", "x-ratelimit-reset": "1"},
    )

    result = await github.crawler(batch_size=1).crawl("octo/demo")

    assert result.success
    assert result.files == []
    assert [s.reason for s in result.stats.skipped_files][1:] == [
        "Rate limit exhausted",
        "Rate limit exhausted",
    ]
    assert "/repos/octo/demo/git/blobs/s2" not in github.requested


async def test_rate_limited_tree_listing(github):
    """A 403 with no remaining quota is reported as rate_limited."""
    github.repo_response = httpx.Response(
        403,
        json={"message": "API rate limit exceeded for 1.2.3.4."},
        headers={
            "x-ratelimit-remaining": "0",
            "x-ratelimit-limit": "60",
            "x-ratelimit-reset": "1700000000",
        },
    )

    result = await github.crawler().crawl("octo/demo")

    assert not result.success
    assert result.error.kind == "rate_limited"
    assert result.error.reset_at == 1700000000
    assert "token" in result.error.message.lower()


async def test_missing_repository(github):
    """A 404 on the repository lookup is reported as not_found."""
    github.repo_response = httpx.Response(404, json={"message": "Not Found"})

    result = await github.crawler().crawl("octo/demo")

    assert result.error.kind == "not_found"
    assert result.files == []


async def test_bad_credentials(github):
    """A 401 is reported as an auth error."""
    github.repo_response = httpx.Response(401, json={"message": "Bad credentials"})

    result = await github.crawler(token="nope").crawl("octo/demo")

    assert result.error.kind == "auth"


async def test_invalid_url_makes_no_requests(github):
    """URL validation happens before any network call."""
    result = await github.crawler().crawl("not-a-url")

    assert result.error.kind == "validation"
    assert github.requested == []


async def test_token_is_sent_as_bearer():
    """A supplied token is sent in the Authorization header."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["authorization"] = request.headers.get("authorization")
        return httpx.Response(200, json={"tree": []})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    result = await crawl_repository("octo/demo#main", token="secret", client=client)

    assert result.success
    assert seen["authorization"] == "Bearer secret"


def test_rate_limit_info_from_headers():
    """Rate limit headers parse into RateLimitInfo; missing headers give None."""
    headers = httpx.Headers(
        {"x-ratelimit-remaining": "5", "x-ratelimit-limit": "60", "x-ratelimit-reset": "99"}
    )

    assert RateLimitInfo.from_headers(headers) == RateLimitInfo(remaining=5, limit=60, reset=99)
    assert RateLimitInfo.from_headers(httpx.Headers({})) is None


def test_stats_to_dict_uses_camel_case():
    """Crawl stats serialize with camelCase keys."""
    stats = CrawlStats(downloaded_count=2, total_size=10)

    data = stats.to_dict()

    assert data["totalFiles"] == 2
    assert data["totalSize"] == 10
    assert data["skippedFiles"] == []


@pytest.mark.skipif(
    not os.getenv("REPODOCS_NETWORK_TESTS"), reason="set REPODOCS_NETWORK_TESTS=1 to hit GitHub"
)
async def test_crawl_public_repository_without_token():
    """A small public repository crawls anonymously."""
    result = await crawl_repository("https://github.com/octocat/Hello-World")

    assert result.success
    assert [f.path for f in result.files] == ["README"]
    assert result.stats.api_requests >= 3
