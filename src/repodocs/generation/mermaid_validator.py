"""Mermaid diagram syntax validation."""

import re
from dataclasses import dataclass, field


@dataclass
class ValidationResult:
    """Result of Mermaid diagram validation.

    Attributes:
        valid: True if the diagram syntax is valid.
        errors: List of human-readable error messages.
        line_numbers: Lines where errors were found.
    """

    valid: bool
    errors: list[str] = field(default_factory=list)
    line_numbers: list[int] = field(default_factory=list)


VALID_DIAGRAM_TYPES = frozenset(
    [
        "flowchart",
        "graph",
        "sequencediagram",
        "classdiagram",
        "statediagram",
        "statediagram-v2",
        "erdiagram",
        "journey",
        "gantt",
        "pie",
        "mindmap",
        "timeline",
    ]
)

FLOWCHART_NODE_RE = re.compile(r'^\s*([A-Za-z_][\w-]*)\s*\[\s*"[^"\n]*"\s*\]\s*$')
FLOWCHART_EDGE_RE = re.compile(
    r'^\s*([A-Za-z_][\w-]*)\s*--\s*"[^"\n]*"\s*-->\s*([A-Za-z_][\w-]*)\s*$'
)
PLAIN_EDGE_RE = re.compile(r"^\s*([A-Za-z_][\w-]*)\s*-->\s*([A-Za-z_][\w-]*)\s*$")
QUOTED_RE = re.compile(r'"[^"\n]*"')


def validate_mermaid(content: str) -> ValidationResult:
    """Validate Mermaid diagram syntax.

    Performs structural validation including:
    - Diagram type declaration present
    - Balanced brackets and double quotes
    - Subgraph/end pairing
    - For flowcharts built from ``id["label"]`` nodes, that every edge
      endpoint is a declared node

    Args:
        content: Mermaid diagram content to validate.

    Returns:
        ValidationResult with validity status and any errors.
    """
    errors: list[str] = []
    line_numbers: list[int] = []

    lines = content.strip().split("\n") if content and content.strip() else []
    if not lines:
        return ValidationResult(valid=False, errors=["Empty diagram"], line_numbers=[0])

    first_line = lines[0].strip().lower()
    if not any(first_line.startswith(dt) for dt in VALID_DIAGRAM_TYPES):
        errors.append(
            "Missing or invalid diagram type. Must start with one of: flowchart, graph, etc."
        )
        line_numbers.append(1)

    # Brackets inside quoted labels are literal text
    unquoted = QUOTED_RE.sub('""', content)
    for open_char, close_char in (("[", "]"), ("(", ")"), ("{", "}")):
        open_count = unquoted.count(open_char)
        close_count = unquoted.count(close_char)
        if open_count != close_count:
            errors.append(
                f"Unbalanced brackets: {open_count} '{open_char}' vs {close_count} '{close_char}'"
            )

    for number, line in enumerate(lines, start=1):
        if line.count('"') % 2:
            errors.append(f"Unbalanced quotes on line {number}")
            line_numbers.append(number)

    subgraph_count = len(re.findall(r"^\s*subgraph\b", content, re.MULTILINE | re.IGNORECASE))
    end_count = len(re.findall(r"^\s*end\b", content, re.MULTILINE | re.IGNORECASE))
    if subgraph_count != end_count:
        errors.append(f"Unmatched subgraph/end: {subgraph_count} subgraphs vs {end_count} ends")

    if first_line.startswith(("flowchart", "graph")):
        declared: set[str] = set()
        edges: list[tuple[int, str, str]] = []
        for number, line in enumerate(lines[1:], start=2):
            node = FLOWCHART_NODE_RE.match(line)
            if node:
                declared.add(node.group(1))
                continue
            edge = FLOWCHART_EDGE_RE.match(line) or PLAIN_EDGE_RE.match(line)
            if edge:
                edges.append((number, edge.group(1), edge.group(2)))
        # Only enforce declarations for diagrams that declare nodes explicitly
        if declared:
            for number, source, target in edges:
                for node_id in (source, target):
                    if node_id not in declared:
                        errors.append(f"Edge on line {number} references undeclared node {node_id}")
                        line_numbers.append(number)

    return ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        line_numbers=line_numbers,
    )


def sanitize_label(text: str, max_length: int = 40) -> str:
    """Make text safe for Mermaid node and edge labels.

    Args:
        text: Raw text to sanitize.
        max_length: Maximum length before truncation.

    Returns:
        Sanitized label safe for Mermaid diagrams.
    """
    result = text.replace("\n", " ").replace("\r", "")

    # Brackets and quotes would close the label early
    result = result.replace("[", "(").replace("]", ")")
    result = result.replace("{", "(").replace("}", ")")
    result = result.replace('"', "")
    result = result.replace("<", "").replace(">", "")

    result = " ".join(result.split())

    if len(result) > max_length:
        result = result[: max_length - 3] + "..."

    return result
