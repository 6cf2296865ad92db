"""Repository access: URL parsing, path filtering and crawling."""

from repodocs.repo.crawler import CrawlResult, CrawlStats, GitHubCrawler, RepoFile, crawl_repository
from repodocs.repo.file_filter import FileFilter
from repodocs.repo.patterns import classify
from repodocs.repo.url_parser import ParsedRepoUrl, normalize_repo_url, parse_repo_url

__all__ = [
    "CrawlResult",
    "CrawlStats",
    "FileFilter",
    "GitHubCrawler",
    "ParsedRepoUrl",
    "RepoFile",
    "classify",
    "crawl_repository",
    "normalize_repo_url",
    "parse_repo_url",
]
