"""Parse GitHub repository references.

Supports:
- Shorthand ``owner/repo``, ``owner/repo#ref``, ``owner/repo@ref``
- HTTPS URLs, optionally with ``/tree/``, ``/blob/``, ``/commit/``,
  ``/releases/tag/`` or ``/archive/`` suffixes
- ``raw.githubusercontent.com`` file URLs
- SSH (``git@github.com:owner/repo.git``, ``ssh://git@github.com/...``)
- ``git://github.com/owner/repo``
- API URLs (``https://api.github.com/repos/owner/repo``)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from repodocs.errors import ValidationError


@dataclass(frozen=True)
class ParsedRepoUrl:
    """Result of parsing a repository reference."""

    owner: str
    repo: str
    branch: Optional[str]
    original_url: str
    path: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def html_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}"


OWNER_RE = r"[A-Za-z0-9](?:[A-Za-z0-9_-]*[A-Za-z0-9])?"
REPO_RE = r"[A-Za-z0-9_.-]+"

SHORTHAND_PATTERN = re.compile(rf"^({OWNER_RE})/({REPO_RE}?)(?:[#@](.+))?$")
RAW_PATTERN = re.compile(
    r"^(?:https?://)?raw\.githubusercontent\.com/([^/]+)/([^/]+)/([^/]+)(?:/(.+))?$"
)
SSH_PATTERN = re.compile(r"^(?:ssh://)?git@github\.com[:/]([^/]+)/([^/\s]+?)/?$")
GIT_PROTOCOL_PATTERN = re.compile(r"^git://github\.com/([^/]+)/([^/\s]+?)/?$")
API_PATTERN = re.compile(r"^(?:https?://)?api\.github\.com/repos/([^/]+)/([^/?#]+)(/[^?#]*)?")
HTTPS_PATTERN = re.compile(r"^(?:https?://)?(?:www\.)?github\.com/([^/]+)/([^/?#]+)(/[^?#]*)?")

FILE_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]+$")
COMMIT_RE = re.compile(r"^/commit/([0-9a-fA-F]+)")
RELEASE_TAG_RE = re.compile(r"^/releases/tag/([^/]+)")
ARCHIVE_REF_RE = re.compile(r"^/archive/refs/(?:heads|tags)/(.+?)\.(?:zip|tar\.gz)$")
LEGACY_ARCHIVE_RE = re.compile(r"^/archive/(.+?)\.(?:zip|tar\.gz)$")
API_BRANCH_RE = re.compile(r"^/(?:git/refs/heads|branches)/(.+)$")


def parse_repo_url(url: str) -> ParsedRepoUrl:
    """Parse a GitHub repository reference.

    Args:
        url: URL or shorthand reference.

    Returns:
        ParsedRepoUrl with owner, repo and optional branch/path.

    Raises:
        ValidationError: If the input is not a recognizable GitHub reference.
    """
    url = (url or "").strip()
    if not url:
        raise ValidationError("Repository URL is required")

    shorthand = SHORTHAND_PATTERN.match(url)
    if shorthand and "github" not in url.lower() and "://" not in url:
        owner, repo, branch = shorthand.groups()
        return _build(owner, repo, branch, url)

    raw = RAW_PATTERN.match(url)
    if raw:
        owner, repo, branch, path = raw.groups()
        return _build(owner, repo, branch, url, path)

    ssh = SSH_PATTERN.match(url)
    if ssh:
        return _build(ssh.group(1), ssh.group(2), None, url)

    git_protocol = GIT_PROTOCOL_PATTERN.match(url)
    if git_protocol:
        return _build(git_protocol.group(1), git_protocol.group(2), None, url)

    api = API_PATTERN.match(url)
    if api:
        owner, repo, rest = api.groups()
        branch = None
        if rest:
            ref = API_BRANCH_RE.match(rest)
            if ref:
                branch = ref.group(1).rstrip("/")
        return _build(owner, repo, branch, url)

    https = HTTPS_PATTERN.match(url)
    if https:
        owner, repo, rest = https.groups()
        branch, path = _parse_ref_suffix(rest or "")
        return _build(owner, repo, branch, url, path)

    raise ValidationError(
        f"Invalid GitHub URL: {url}. Expected https://github.com/owner/repo or owner/repo",
        {"url": url},
    )


def _parse_ref_suffix(rest: str) -> tuple[Optional[str], Optional[str]]:
    """Pull a ref (and sub-path) out of the part of a URL after owner/repo."""
    rest = rest.rstrip("/")
    if rest.startswith("/tree/"):
        ref, _, path = rest[len("/tree/") :].partition("/")
        return ref or None, path or None

    if rest.startswith("/blob/"):
        parts = rest[len("/blob/") :].split("/")
        # Branch ends where the first segment that looks like a file begins
        for i, part in enumerate(parts):
            if i > 0 and FILE_EXTENSION_RE.search(part):
                return "/".join(parts[:i]), "/".join(parts[i:])
        return parts[0] or None, "/".join(parts[1:]) or None

    for pattern in (COMMIT_RE, RELEASE_TAG_RE, ARCHIVE_REF_RE, LEGACY_ARCHIVE_RE):
        match = pattern.match(rest)
        if match:
            return match.group(1), None

    return None, None


def _build(
    owner: str,
    repo: str,
    branch: Optional[str],
    original_url: str,
    path: Optional[str] = None,
) -> ParsedRepoUrl:
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not re.fullmatch(OWNER_RE, owner) or not re.fullmatch(REPO_RE, repo) or repo in (".", ".."):
        raise ValidationError(f"Invalid GitHub repository reference: {original_url}")
    return ParsedRepoUrl(
        owner=owner,
        repo=repo,
        branch=branch or None,
        original_url=original_url,
        path=path,
    )


def is_valid_repo_url(url: str) -> bool:
    """Check whether a string parses as a GitHub repository reference."""
    try:
        parse_repo_url(url)
    except ValidationError:
        return False
    return True


def normalize_repo_url(url: str) -> str:
    """Normalize a repository reference to a lowercase canonical HTTPS URL."""
    parsed = parse_repo_url(url)
    return parsed.html_url.lower()


def format_file_size(size_bytes: int) -> str:
    """Format a byte count for display."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.2f} MB"
