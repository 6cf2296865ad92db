"""Mermaid diagram generators for the documentation overview."""

from __future__ import annotations

import re
from collections.abc import Sequence

from repodocs.constants.generation import DIAGRAM_LABEL_MAX_LENGTH
from repodocs.generation.mermaid_validator import sanitize_label, validate_mermaid
from repodocs.generation.models import Abstraction, Relationship


class RelationshipDiagramGenerator:
    """Generates a flowchart of abstractions and their relationships.

    Each abstraction becomes a node ``A<index>`` and each relationship a
    labelled edge. Relationships pointing at unknown abstractions are dropped.
    """

    def __init__(self, label_max_length: int = DIAGRAM_LABEL_MAX_LENGTH):
        self.label_max_length = label_max_length

    def generate(
        self, abstractions: Sequence[Abstraction], relationships: Sequence[Relationship]
    ) -> str:
        """Generate the flowchart source.

        Args:
            abstractions: Abstractions from the identification stage.
            relationships: Edges from the relationship stage.

        Returns:
            Mermaid flowchart diagram string.
        """
        lines = ["flowchart TD"]
        known = {abstraction.index for abstraction in abstractions}

        for abstraction in abstractions:
            # Node names are never truncated, only made safe
            name = sanitize_label(abstraction.name, max_length=200)
            lines.append(f'    A{abstraction.index}["{name}"]')

        for rel in relationships:
            if rel.from_index not in known or rel.to_index not in known:
                continue
            label = sanitize_label(rel.label, max_length=self.label_max_length)
            lines.append(f'    A{rel.from_index} -- "{label}" --> A{rel.to_index}')

        return "\n".join(lines)


def relationship_list(
    abstractions: Sequence[Abstraction], relationships: Sequence[Relationship]
) -> str:
    """Text rendering of the relationship graph, used when a diagram is unusable."""
    names = {abstraction.index: abstraction.name for abstraction in abstractions}
    lines = [
        f"- **{names[rel.from_index]}** {rel.label} **{names[rel.to_index]}**"
        for rel in relationships
        if rel.from_index in names and rel.to_index in names
    ]
    return "\n".join(lines) if lines else "- No relationships were identified."


def render_relationship_section(
    abstractions: Sequence[Abstraction],
    relationships: Sequence[Relationship],
    generator: RelationshipDiagramGenerator | None = None,
) -> tuple[str, bool]:
    """Render the relationship graph as a fenced Mermaid block, or a list.

    Returns:
        Tuple of (markdown, used_diagram). ``used_diagram`` is False when
        the generated diagram failed validation and the text list was used.
    """
    generator = generator or RelationshipDiagramGenerator()
    diagram = generator.generate(abstractions, relationships)
    if validate_mermaid(diagram).valid:
        return f"```mermaid\n{diagram}\n```", True
    return relationship_list(abstractions, relationships), False


CHAPTER_DIAGRAM_RE = re.compile(r"```mermaid[ \t]*\n([\s\S]*?)```")


def downgrade_invalid_diagrams(content: str, fallback: str) -> tuple[str, int]:
    """Replace Mermaid blocks that fail validation with ``fallback`` text.

    Returns:
        Tuple of (content, number of blocks replaced).
    """
    replaced = 0

    def check(match: re.Match[str]) -> str:
        nonlocal replaced
        if validate_mermaid(match.group(1)).valid:
            return match.group(0)
        replaced += 1
        return fallback

    return CHAPTER_DIAGRAM_RE.sub(check, content), replaced
