"""Error taxonomy shared by the crawler, gateway, orchestrator and API.

Every error carries a stable ``kind`` string so callers (and the UI behind
the progress stream) can offer a specific remedy instead of a generic
failure message.
"""

from __future__ import annotations

from typing import Any


class RepoDocsError(Exception):
    """Base class for all repodocs errors."""

    kind = "error"

    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for progress events and API responses."""
        payload: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class ValidationError(RepoDocsError):
    """Malformed repository URL or request body."""

    kind = "validation"


class NotFoundError(RepoDocsError):
    """Repository (or stored project) does not exist or is not visible."""

    kind = "not_found"


class AuthError(RepoDocsError):
    """Hosting API rejected the supplied credentials."""

    kind = "auth"


class RateLimitedError(RepoDocsError):
    """Hosting API quota exhausted."""

    kind = "rate_limited"

    def __init__(
        self,
        message: str = "GitHub API rate limit exceeded. Add a GitHub token to raise the limit.",
        reset_at: int | None = None,
        detail: dict[str, Any] | None = None,
    ):
        super().__init__(message, detail)
        self.reset_at = reset_at


class PartialFetchError(RepoDocsError):
    """A single file's content could not be fetched. Never fatal for a crawl."""

    kind = "partial_fetch"

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to fetch {path}: {reason}", {"path": path})
        self.path = path
        self.reason = reason


class ParseError(RepoDocsError):
    """A pipeline stage returned output that could not be parsed."""

    kind = "parse"

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}", {"stage": stage})
        self.stage = stage


class ContextOverflowError(RepoDocsError):
    """The prompt exceeded the model's context window."""

    kind = "overflow"

    def __init__(self, message: str, limit: int | None = None, actual: int | None = None):
        super().__init__(message, {"limit": limit, "actual": actual})
        self.limit = limit
        self.actual = actual


class GatewayError(RepoDocsError):
    """Network, provider or authentication failure talking to an LLM."""

    kind = "gateway"


class GenerationCancelledError(RepoDocsError):
    """The caller aborted an in-flight generation."""

    kind = "cancelled"

    def __init__(self, message: str = "Generation cancelled"):
        super().__init__(message)


class StorageError(RepoDocsError):
    """Reading or writing the output store failed."""

    kind = "storage"


class HostingApiError(RepoDocsError):
    """Unexpected response from the repository hosting API."""

    kind = "hosting_api"

    def __init__(self, status_code: int, message: str):
        super().__init__(message, {"status_code": status_code})
        self.status_code = status_code
