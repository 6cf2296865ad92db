"""Pydantic schemas for API requests and responses.

Field names are snake_case in Python and camelCase on the wire.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base model accepting and emitting camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Crawl
# =============================================================================


class CrawlRequest(ApiModel):
    """Request to crawl a repository."""

    repo_url: str = Field(..., min_length=1, description="GitHub URL or owner/repo")
    github_token: str | None = None


class RepoFileOut(ApiModel):
    """A downloaded repository file."""

    path: str
    content: str
    size: int
    language: str | None = None


class CrawlResponse(ApiModel):
    """Crawl outcome. Failures are reported with ``success`` false."""

    success: bool
    files: list[RepoFileOut] | None = None
    stats: dict[str, Any] | None = None
    error: str | None = None
    error_kind: str | None = None
    latency_ms: int


# =============================================================================
# Generation
# =============================================================================


class GenerateRequest(ApiModel):
    """Request to generate documentation for a repository."""

    repo_url: str = Field(..., min_length=1)
    llm_provider: str = Field(..., min_length=1)
    llm_model: str = Field(..., min_length=1)
    llm_api_key: str | None = None
    llm_base_url: str | None = None
    github_token: str | None = None
    user_id: str | None = None
    linked_project_id: str | None = None
    language: str | None = None
    documentation_mode: Literal["tutorial", "architecture"] = "tutorial"


# =============================================================================
# Output Store
# =============================================================================


class ChapterEntry(ApiModel):
    """Chapter listed in project metadata."""

    filename: str
    title: str
    order: int
    abstractions_covered: list[str] = Field(default_factory=list)


class ProjectMeta(ApiModel):
    """Metadata of a generated project."""

    project_slug: str
    project_name: str
    repo_url: str
    repo_owner: str = ""
    repo_name: str = ""
    branch: str | None = None
    created_at: str
    chapters: list[ChapterEntry] = Field(default_factory=list)
    user_id: str | None = None
    llm_provider: str = ""
    llm_model: str = ""
    linked_project_id: str | None = None
    total_cost: float | None = None


class ChapterContent(ApiModel):
    """Markdown body of one chapter."""

    slug: str
    filename: str
    content: str


class LinkRequest(ApiModel):
    """Attach (or detach, with null) an external project record."""

    linked_project_id: str | None = None


# =============================================================================
# LLM
# =============================================================================


class ProviderTestRequest(ApiModel):
    """Credentials and model to test."""

    provider: str
    model: str
    api_key: str | None = None
    base_url: str | None = None


class ProviderTestResponse(ApiModel):
    success: bool
    message: str
    kind: str | None = None
    latency_ms: int | None = None


class CostEstimateRequest(ApiModel):
    """Source size and model to estimate a full run for."""

    total_chars: int = Field(..., ge=0)
    llm_provider: str
    llm_model: str
    chapters: int | None = Field(default=None, ge=1)


class TokenEstimateRequest(ApiModel):
    """Text to measure against a model's context window."""

    text: str
    llm_provider: str
    llm_model: str
