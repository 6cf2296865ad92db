"""Data structures passed between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Abstraction:
    """An architectural unit identified in stage one.

    Attributes:
        index: Position in the stage-one list; later stages refer to it by index.
        name: Short display name.
        description: Beginner-friendly explanation.
        file_indices: Indices into the crawled file list.
    """

    index: int
    name: str
    description: str
    file_indices: tuple[int, ...] = ()


@dataclass(frozen=True)
class Relationship:
    """Directed interaction between two abstractions."""

    from_index: int
    to_index: int
    label: str


@dataclass(frozen=True)
class ProjectAnalysis:
    """Stage-two output: project summary plus the relationship graph."""

    summary: str
    relationships: tuple[Relationship, ...] = ()


@dataclass(frozen=True)
class Chapter:
    """One generated documentation file."""

    filename: str
    title: str
    content: str
    order: int
    abstractions_covered: tuple[str, ...] = field(default_factory=tuple)
    # Stage-one index of the abstraction a chapter explains; None for the overview
    abstraction_index: int | None = None


@dataclass(frozen=True)
class ChapterInfo:
    """Chapter entry stored in project metadata."""

    filename: str
    title: str
    order: int
    abstractions_covered: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "title": self.title,
            "order": self.order,
            "abstractionsCovered": list(self.abstractions_covered),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ChapterInfo:
        return cls(
            filename=data["filename"],
            title=data.get("title", ""),
            order=int(data.get("order", 0)),
            abstractions_covered=tuple(data.get("abstractionsCovered") or ()),
        )


@dataclass
class ProjectDoc:
    """A persisted documentation set, addressed by its slug."""

    slug: str
    project_name: str
    repo_url: str
    created_at: str
    chapters: list[Chapter] = field(default_factory=list)
    repo_owner: str = ""
    repo_name: str = ""
    branch: str | None = None
    user_id: str | None = None
    llm_provider: str = ""
    llm_model: str = ""
    linked_project_id: str | None = None
    total_cost: float | None = None

    def chapter_infos(self) -> list[ChapterInfo]:
        return [
            ChapterInfo(c.filename, c.title, c.order, c.abstractions_covered)
            for c in sorted(self.chapters, key=lambda c: c.order)
        ]

    def meta_dict(self) -> dict:
        """Serializable form written to ``_meta.json``."""
        return {
            "projectSlug": self.slug,
            "projectName": self.project_name,
            "repoUrl": self.repo_url,
            "repoOwner": self.repo_owner,
            "repoName": self.repo_name,
            "branch": self.branch,
            "createdAt": self.created_at,
            "chapters": [info.to_dict() for info in self.chapter_infos()],
            "userId": self.user_id,
            "llmProvider": self.llm_provider,
            "llmModel": self.llm_model,
            "linkedProjectId": self.linked_project_id,
            "totalCost": self.total_cost,
        }
