"""GitHub repository crawler.

Lists a repository's tree through the REST API (no local clone), filters
paths before any content is requested, and downloads the remaining blobs in
concurrent batches. A single failed blob never fails the crawl; only an
inability to list the tree does.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from repodocs.config import ConfigError, load_settings
from repodocs.constants.files import (
    DEFAULT_BRANCH_FALLBACK,
    FETCH_BATCH_SIZE,
    GITHUB_ACCEPT_HEADER,
    GITHUB_API_BASE,
    GITHUB_USER_AGENT,
    RATE_LIMIT_WARNING_THRESHOLD,
    REQUEST_TIMEOUT_SECONDS,
)
from repodocs.errors import (
    AuthError,
    HostingApiError,
    NotFoundError,
    PartialFetchError,
    RateLimitedError,
    RepoDocsError,
)
from repodocs.repo.file_filter import FileFilter, detect_language
from repodocs.repo.url_parser import ParsedRepoUrl, parse_repo_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepoFile:
    """A downloaded repository file."""

    path: str
    content: str
    size: int
    language: str | None = None


@dataclass(frozen=True)
class SkippedFile:
    """A file that was listed but not downloaded."""

    path: str
    reason: str


@dataclass(frozen=True)
class RateLimitInfo:
    """Snapshot of the x-ratelimit-* response headers."""

    remaining: int
    limit: int
    reset: int

    @classmethod
    def from_headers(cls, headers: httpx.Headers) -> RateLimitInfo | None:
        try:
            return cls(
                remaining=int(headers["x-ratelimit-remaining"]),
                limit=int(headers["x-ratelimit-limit"]),
                reset=int(headers["x-ratelimit-reset"]),
            )
        except (KeyError, ValueError):
            return None


@dataclass
class CrawlStats:
    """Aggregate crawl statistics."""

    downloaded_count: int = 0
    skipped_count: int = 0
    excluded_count: int = 0
    api_requests: int = 0
    total_size: int = 0
    method: str = "git-tree"
    default_branch: str | None = None
    truncated: bool = False
    skipped_files: list[SkippedFile] = field(default_factory=list)
    languages: dict[str, int] = field(default_factory=dict)
    rate_limit: RateLimitInfo | None = None

    @property
    def total_files(self) -> int:
        return self.downloaded_count

    def record_skip(self, path: str, reason: str) -> None:
        self.skipped_count += 1
        self.skipped_files.append(SkippedFile(path=path, reason=reason))

    def record_download(self, repo_file: RepoFile) -> None:
        self.downloaded_count += 1
        self.total_size += repo_file.size
        if repo_file.language:
            self.languages[repo_file.language] = self.languages.get(repo_file.language, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalFiles": self.total_files,
            "totalSize": self.total_size,
            "languages": dict(self.languages),
            "downloadedCount": self.downloaded_count,
            "skippedCount": self.skipped_count,
            "excludedCount": self.excluded_count,
            "apiRequests": self.api_requests,
            "method": self.method,
            "defaultBranch": self.default_branch,
            "truncated": self.truncated,
            "skippedFiles": [{"path": s.path, "reason": s.reason} for s in self.skipped_files],
        }


@dataclass
class CrawlResult:
    """Outcome of a crawl. ``error`` is set only when the tree could not be listed."""

    files: list[RepoFile] = field(default_factory=list)
    stats: CrawlStats = field(default_factory=CrawlStats)
    error: RepoDocsError | None = None
    repo: ParsedRepoUrl | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def _error_for_response(response: httpx.Response, target: str, has_token: bool) -> RepoDocsError:
    """Map a failed hosting API response to the error taxonomy."""
    status = response.status_code
    body = response.text
    rate_limit = RateLimitInfo.from_headers(response.headers)

    if status == 401 or "bad credentials" in body.lower():
        return AuthError("GitHub rejected the supplied token (bad credentials)", {"target": target})

    if status == 429 or (
        status == 403
        and ((rate_limit is not None and rate_limit.remaining == 0) or "rate limit" in body.lower())
    ):
        hint = (
            "GitHub API rate limit exceeded for this token."
            if has_token
            else "GitHub API rate limit exceeded. Add a GitHub token to raise the limit."
        )
        return RateLimitedError(hint, reset_at=rate_limit.reset if rate_limit else None)

    if status == 404:
        message = f"Repository not found: {target}."
        if not has_token:
            message += " If it is private, supply a GitHub token."
        return NotFoundError(message, {"target": target})

    return HostingApiError(status, f"GitHub API error {status} for {target}: {body[:200]}")


class GitHubCrawler:
    """Crawl a GitHub repository through the REST API."""

    def __init__(
        self,
        token: str | None = None,
        file_filter: FileFilter | None = None,
        client: httpx.AsyncClient | None = None,
        api_base: str = GITHUB_API_BASE,
        batch_size: int | None = None,
        timeout: float | None = None,
        rate_limit_warning_threshold: int | None = None,
    ):
        """Initialize the crawler.

        Args:
            token: GitHub token. Falls back to settings, then GITHUB_TOKEN.
            file_filter: Path and content filter. Defaults to FileFilter().
            client: Optional pre-configured httpx client (used by tests).
            api_base: GitHub API root URL.
            batch_size: Concurrent blob fetches per batch.
            timeout: Per-request timeout in seconds.
            rate_limit_warning_threshold: Warn when remaining requests drop below this.
        """
        default_batch_size = FETCH_BATCH_SIZE
        default_timeout = REQUEST_TIMEOUT_SECONDS
        default_threshold = RATE_LIMIT_WARNING_THRESHOLD
        default_token = None
        try:
            settings = load_settings()
            default_batch_size = settings.crawl.fetch_batch_size
            default_timeout = settings.crawl.request_timeout
            default_threshold = settings.crawl.rate_limit_warning_threshold
            default_token = settings.github_token
        except (ValueError, OSError, ConfigError):
            # Settings not available, use defaults
            pass

        self.token = token or default_token or os.getenv("GITHUB_TOKEN") or None
        self.file_filter = file_filter or FileFilter()
        self.api_base = api_base.rstrip("/")
        self.batch_size = batch_size or default_batch_size
        self.timeout = timeout or default_timeout
        self.rate_limit_warning_threshold = (
            rate_limit_warning_threshold
            if rate_limit_warning_threshold is not None
            else default_threshold
        )
        self._client = client
        self._rate_limit_warned = False
        self._rate_limited = False

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": GITHUB_ACCEPT_HEADER, "User-Agent": GITHUB_USER_AGENT}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def crawl(self, repo_url: str) -> CrawlResult:
        """Crawl a repository.

        The URL is validated before any network call. Errors that prevent
        listing the tree are returned on the result, never raised.

        Args:
            repo_url: GitHub URL or owner/repo shorthand.

        Returns:
            CrawlResult with files in tree order and aggregate stats.
        """
        try:
            parsed = parse_repo_url(repo_url)
        except RepoDocsError as e:
            return CrawlResult(error=e)

        stats = CrawlStats()
        self._rate_limit_warned = False
        self._rate_limited = False
        start = time.perf_counter()

        if not self.token:
            logger.warning(
                "No GitHub token: rate limit is 60 requests/hour and private repos are invisible"
            )

        if self._client is not None:
            result = await self._crawl_with(self._client, parsed, stats)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                result = await self._crawl_with(client, parsed, stats)

        elapsed = time.perf_counter() - start
        if result.success:
            logger.info(
                f"Crawled {parsed.full_name}: {stats.downloaded_count} downloaded, "
                f"{stats.skipped_count} skipped, {stats.excluded_count} excluded, "
                f"{stats.api_requests} API requests in {elapsed:.1f}s"
            )
        else:
            logger.error(f"Crawl of {parsed.full_name} failed: {result.error}")
        return result

    async def _crawl_with(
        self, client: httpx.AsyncClient, parsed: ParsedRepoUrl, stats: CrawlStats
    ) -> CrawlResult:
        try:
            branch = parsed.branch or await self._fetch_default_branch(client, parsed, stats)
            stats.default_branch = branch
            tree = await self._fetch_tree(client, parsed, branch, stats)
        except RepoDocsError as e:
            return CrawlResult(stats=stats, error=e, repo=parsed)

        to_fetch = self._select_blobs(tree, parsed.path, stats)
        logger.info(f"Fetching {len(to_fetch)} of {len(tree)} tree entries for {parsed.full_name}")

        files: list[RepoFile] = []
        for i in range(0, len(to_fetch), self.batch_size):
            batch = to_fetch[i : i + self.batch_size]
            fetched = await asyncio.gather(
                *(self._fetch_blob(client, parsed, item, stats) for item in batch)
            )
            for repo_file in fetched:
                if repo_file is not None:
                    files.append(repo_file)
                    stats.record_download(repo_file)

        return CrawlResult(files=files, stats=stats, repo=parsed)

    async def _get(
        self, client: httpx.AsyncClient, url: str, stats: CrawlStats, **params: Any
    ) -> httpx.Response:
        stats.api_requests += 1
        response = await client.get(url, headers=self._headers(), params=params or None)
        rate_limit = RateLimitInfo.from_headers(response.headers)
        if rate_limit is not None:
            stats.rate_limit = rate_limit
            if rate_limit.remaining < self.rate_limit_warning_threshold and not self._rate_limit_warned:
                self._rate_limit_warned = True
                logger.warning(
                    f"GitHub rate limit low: {rate_limit.remaining}/{rate_limit.limit} "
                    f"remaining, resets at {rate_limit.reset}"
                )
        return response

    async def _fetch_default_branch(
        self, client: httpx.AsyncClient, parsed: ParsedRepoUrl, stats: CrawlStats
    ) -> str:
        url = f"{self.api_base}/repos/{parsed.owner}/{parsed.repo}"
        try:
            response = await self._get(client, url, stats)
        except httpx.HTTPError as e:
            raise HostingApiError(0, f"Could not reach GitHub: {e}") from e
        if response.status_code != 200:
            raise _error_for_response(response, parsed.full_name, bool(self.token))
        return response.json().get("default_branch") or DEFAULT_BRANCH_FALLBACK

    async def _fetch_tree(
        self, client: httpx.AsyncClient, parsed: ParsedRepoUrl, branch: str, stats: CrawlStats
    ) -> list[dict[str, Any]]:
        url = f"{self.api_base}/repos/{parsed.owner}/{parsed.repo}/git/trees/{branch}"
        try:
            response = await self._get(client, url, stats, recursive="1")
        except httpx.HTTPError as e:
            raise HostingApiError(0, f"Could not reach GitHub: {e}") from e
        if response.status_code != 200:
            raise _error_for_response(response, f"{parsed.full_name}@{branch}", bool(self.token))

        data = response.json()
        if data.get("truncated"):
            stats.truncated = True
            logger.warning(
                f"Tree for {parsed.full_name}@{branch} was truncated by GitHub "
                "(more than 100k entries or 7MB); some files are missing"
            )
        return list(data.get("tree", []))

    def _select_blobs(
        self, tree: list[dict[str, Any]], prefix: str | None, stats: CrawlStats
    ) -> list[dict[str, Any]]:
        """Apply path and size filters to tree entries before any content fetch."""
        selected = []
        for item in tree:
            if item.get("type") != "blob":
                continue
            path = item.get("path", "")
            if prefix and not (path == prefix or path.startswith(prefix.rstrip("/") + "/")):
                stats.excluded_count += 1
                continue
            if not self.file_filter.classify(path).included:
                stats.excluded_count += 1
                continue
            if self.file_filter.is_oversized(item.get("size")):
                logger.debug(f"Skipping large file: {path} ({item.get('size')} bytes)")
                stats.record_skip(path, "File too large")
                continue
            selected.append(item)
        return selected

    async def _fetch_blob(
        self,
        client: httpx.AsyncClient,
        parsed: ParsedRepoUrl,
        item: dict[str, Any],
        stats: CrawlStats,
    ) -> RepoFile | None:
        path = item["path"]
        if self._rate_limited:
            stats.record_skip(path, "Rate limit exhausted")
            return None

        url = f"{self.api_base}/repos/{parsed.owner}/{parsed.repo}/git/blobs/{item['sha']}"
        try:
            response = await self._get(client, url, stats)
            if response.status_code != 200:
                error = _error_for_response(response, path, bool(self.token))
                if isinstance(error, RateLimitedError):
                    self._rate_limited = True
                raise PartialFetchError(path, error.message)
            data = self._decode_blob(response.json())
        except PartialFetchError as e:
            logger.warning(e.message)
            stats.record_skip(path, e.reason)
            return None
        except (httpx.HTTPError, ValueError, binascii.Error) as e:
            logger.warning(f"Failed to fetch {path}: {e}")
            stats.record_skip(path, f"Fetch failed: {e}")
            return None

        reason = self.file_filter.check_content(data)
        if reason is not None:
            stats.record_skip(path, reason)
            return None

        return RepoFile(
            path=path,
            content=data.decode("utf-8", errors="replace"),
            size=len(data),
            language=detect_language(path),
        )

    @staticmethod
    def _decode_blob(blob: dict[str, Any]) -> bytes:
        content = blob.get("content") or ""
        if blob.get("encoding") == "base64":
            return base64.b64decode(content.replace("\n", ""))
        return content.encode("utf-8")


async def crawl_repository(
    repo_url: str,
    token: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> CrawlResult:
    """Crawl a repository with default filters.

    Args:
        repo_url: GitHub URL or owner/repo shorthand.
        token: Optional GitHub token.
        client: Optional httpx client.

    Returns:
        CrawlResult; check ``success`` and ``error``.
    """
    return await GitHubCrawler(token=token, client=client).crawl(repo_url)
