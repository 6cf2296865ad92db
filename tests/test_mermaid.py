"""Mermaid validation, diagram generation and overview tests."""

from repodocs.generation.mermaid import (
    RelationshipDiagramGenerator,
    downgrade_invalid_diagrams,
    relationship_list,
    render_relationship_section,
)
from repodocs.generation.mermaid_validator import sanitize_label, validate_mermaid
from repodocs.generation.models import Abstraction, Chapter, ProjectAnalysis, Relationship
from repodocs.generation.overview import OverviewGenerator

ABSTRACTIONS = [
    Abstraction(0, "Router", "Routes requests.", (0,)),
    Abstraction(1, "Session Store", "Keeps sessions.", (1,)),
    Abstraction(2, "Config [Loader]", "Reads config.", (2,)),
]
RELATIONSHIPS = (
    Relationship(0, 1, "Reads session from"),
    Relationship(2, 0, "Configures"),
)


class TestValidateMermaid:
    """Tests for validate_mermaid."""

    def test_valid_flowchart(self):
        """A declared-node flowchart with labelled edges is valid."""
        diagram = 'flowchart TD\n    A0["Router"]\n    A1["Store"]\n    A0 -- "uses" --> A1'

        result = validate_mermaid(diagram)

        assert result.valid
        assert result.errors == []

    def test_sequence_diagram_is_valid(self):
        """Other diagram types pass the structural checks."""
        diagram = "sequenceDiagram\n    participant A\n    A->>B: hello"

        assert validate_mermaid(diagram).valid

    def test_empty_diagram(self):
        """Empty content is invalid."""
        assert not validate_mermaid("").valid

    def test_missing_diagram_type(self):
        """The first line must declare a diagram type."""
        result = validate_mermaid('A["x"] --> B["y"]')

        assert not result.valid
        assert 1 in result.line_numbers

    def test_unbalanced_brackets(self):
        """Unbalanced brackets outside labels are reported."""
        result = validate_mermaid("flowchart TD\n    A[Start --> B")

        assert not result.valid
        assert any("Unbalanced brackets" in error for error in result.errors)

    def test_brackets_inside_labels_are_ignored(self):
        """Brackets within quoted labels do not count as structure."""
        assert validate_mermaid('flowchart TD\n    A0["list[int]"]').valid

    def test_undeclared_edge_endpoint(self):
        """Edges must reference declared nodes in explicit-node flowcharts."""
        diagram = 'flowchart TD\n    A0["Router"]\n    A0 -- "uses" --> A9'

        result = validate_mermaid(diagram)

        assert not result.valid
        assert 3 in result.line_numbers

    def test_unmatched_subgraph(self):
        """Every subgraph needs an end."""
        result = validate_mermaid("flowchart TD\n    subgraph one\n    A --> B")

        assert not result.valid


def test_sanitize_label():
    """Labels lose brackets, quotes and angle brackets and are truncated."""
    assert sanitize_label('say "hi" [now] <b>') == "say hi (now) b"
    assert sanitize_label("a" * 50, max_length=10) == "aaaaaaa..."


class TestRelationshipDiagram:
    """Tests for the relationship flowchart."""

    def test_generates_valid_flowchart(self):
        """Every abstraction is a node and every relationship an edge."""
        diagram = RelationshipDiagramGenerator().generate(ABSTRACTIONS, RELATIONSHIPS)

        assert diagram.startswith("flowchart TD")
        assert 'A2["Config (Loader)"]' in diagram
        assert 'A0 -- "Reads session from" --> A1' in diagram
        assert validate_mermaid(diagram).valid

    def test_drops_edges_to_unknown_abstractions(self):
        """Relationships pointing outside the abstraction list are omitted."""
        diagram = RelationshipDiagramGenerator().generate(
            ABSTRACTIONS[:2], (Relationship(0, 5, "broken"),)
        )

        assert "broken" not in diagram

    def test_long_edge_labels_are_truncated(self):
        """Edge labels are cut to the configured length."""
        generator = RelationshipDiagramGenerator(label_max_length=10)

        diagram = generator.generate(ABSTRACTIONS, (Relationship(0, 1, "x" * 40),))

        assert '"xxxxxxx..."' in diagram

    def test_section_is_fenced(self):
        """A valid diagram is rendered as a fenced mermaid block."""
        section, used_diagram = render_relationship_section(ABSTRACTIONS, RELATIONSHIPS)

        assert used_diagram
        assert section.startswith("```mermaid\nflowchart TD")
        assert section.endswith("```")


def test_relationship_list_text():
    """The text fallback lists each edge with bold abstraction names."""
    text = relationship_list(ABSTRACTIONS, RELATIONSHIPS)

    assert "- **Router** Reads session from **Session Store**" in text
    assert relationship_list(ABSTRACTIONS, ()) == "- No relationships were identified."


class TestDowngradeInvalidDiagrams:
    """Tests for chapter diagram checking."""

    def test_invalid_blocks_are_replaced(self):
        """Blocks that fail validation become the fallback text."""
        content = "# Chapter 1\n\n```mermaid\nnot a diagram [\n```\n\nMore text."

        result, replaced = downgrade_invalid_diagrams(content, "- fallback")

        assert replaced == 1
        assert "```mermaid" not in result
        assert "- fallback" in result
        assert result.endswith("More text.")

    def test_valid_blocks_are_kept(self):
        """Valid diagrams and other code blocks are untouched."""
        content = "```mermaid\nsequenceDiagram\n    A->>B: hi\n```\n\n```python\nx = [\n```"

        result, replaced = downgrade_invalid_diagrams(content, "- fallback")

        assert replaced == 0
        assert result == content


class TestOverviewGenerator:
    """Tests for the overview chapter."""

    def make_chapters(self):
        return [
            Chapter("00_chapter-1-router.md", "Chapter 1: Router", "# Chapter 1", 0, ("Router",)),
            Chapter(
                "01_chapter-2-session-store.md",
                "Chapter 2: Session Store",
                "# Chapter 2",
                1,
                ("Session Store",),
            ),
        ]

    def test_overview_links_every_chapter(self):
        """The overview holds the summary, diagram and a link per chapter."""
        analysis = ProjectAnalysis(summary="A tiny framework.", relationships=RELATIONSHIPS)

        overview = OverviewGenerator().generate(
            "demo",
            analysis,
            ABSTRACTIONS,
            self.make_chapters(),
            repo_url="https://github.com/o/demo",
        )

        assert overview.filename == "-1_overview.md"
        assert overview.order == -1
        assert overview.content.startswith("# Tutorial: demo\n\nA tiny framework.")
        assert "```mermaid" in overview.content
        assert "1. [Router](00_chapter-1-router.md)" in overview.content
        assert "2. [Session Store](01_chapter-2-session-store.md)" in overview.content
        assert "https://github.com/o/demo" in overview.content

    def test_invalid_diagram_falls_back_to_list(self):
        """If the generated diagram fails validation, the relationship list is used."""

        class BrokenGenerator(RelationshipDiagramGenerator):
            def generate(self, abstractions, relationships):
                return "flowchart TD\n    A0[unclosed"

        analysis = ProjectAnalysis(summary="Summary.", relationships=RELATIONSHIPS)

        overview = OverviewGenerator(BrokenGenerator()).generate(
            "demo", analysis, ABSTRACTIONS, self.make_chapters()
        )

        assert "```mermaid" not in overview.content
        assert "- **Router** Reads session from **Session Store**" in overview.content
