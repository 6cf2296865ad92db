"""Overview chapter generator."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from repodocs.constants.generation import OVERVIEW_FILENAME, OVERVIEW_ORDER
from repodocs.generation.mermaid import RelationshipDiagramGenerator, render_relationship_section
from repodocs.generation.models import Abstraction, Chapter, ProjectAnalysis

logger = logging.getLogger(__name__)


class OverviewGenerator:
    """Builds the overview chapter from pipeline output.

    The overview is synthesized locally rather than by the model: it lists
    the summary, a relationship flowchart and links to every chapter, so it
    exists even when the ordering stage never mentions it.
    """

    def __init__(self, diagram_generator: RelationshipDiagramGenerator | None = None):
        self.diagram_generator = diagram_generator or RelationshipDiagramGenerator()

    def generate(
        self,
        project_name: str,
        analysis: ProjectAnalysis,
        abstractions: Sequence[Abstraction],
        chapters: Sequence[Chapter],
        repo_url: str | None = None,
    ) -> Chapter:
        """Build the overview chapter.

        Args:
            project_name: Display name of the project.
            analysis: Summary and relationships from the mapping stage.
            abstractions: All abstractions.
            chapters: Generated chapters in plan order.
            repo_url: Source repository link, if known.

        Returns:
            Chapter with order -1 and the overview filename.
        """
        parts = [f"# Tutorial: {project_name}", "", analysis.summary, ""]
        if repo_url:
            parts += [f"**Source Repository:** [{repo_url}]({repo_url})", ""]

        section, used_diagram = render_relationship_section(
            abstractions, analysis.relationships, self.diagram_generator
        )
        if not used_diagram:
            logger.warning(f"Overview diagram for {project_name} failed validation, using a list")
        parts += [section, "", "## Chapters", ""]

        for number, chapter in enumerate(chapters, start=1):
            name = chapter.abstractions_covered[0] if chapter.abstractions_covered else chapter.title
            parts.append(f"{number}. [{name}]({chapter.filename})")

        return Chapter(
            filename=OVERVIEW_FILENAME,
            title=f"Tutorial: {project_name}",
            content="\n".join(parts) + "\n",
            order=OVERVIEW_ORDER,
            abstractions_covered=tuple(a.name for a in abstractions),
        )
