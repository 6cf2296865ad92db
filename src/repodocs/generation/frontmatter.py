"""Utilities for building and parsing YAML frontmatter in chapter files.

Frontmatter provides metadata for each chapter:
- title: Chapter title as shown in listings
- order: Position in the chapter plan (-1 for the overview)
- generatedAt: ISO timestamp of generation
- abstractionsCovered: Names of the abstractions the chapter explains
"""

from collections.abc import Sequence
from datetime import datetime

import yaml


def build_frontmatter(
    title: str,
    order: int,
    generated: datetime,
    abstractions_covered: Sequence[str] = (),
) -> str:
    """Build YAML frontmatter string for a chapter.

    Args:
        title: Chapter title.
        order: Chapter order.
        generated: Datetime when the chapter was generated.
        abstractions_covered: Abstraction names covered by the chapter.

    Returns:
        YAML frontmatter string starting with --- and ending with ---
        followed by a blank line.
    """
    metadata = {
        "title": title,
        "order": order,
        "generatedAt": generated.isoformat(),
        "abstractionsCovered": list(abstractions_covered),
    }
    # sort_keys=False keeps the documented key order
    body = yaml.safe_dump(metadata, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{body}---\n\n"


def parse_frontmatter(content: str) -> tuple[dict | None, str]:
    """Parse YAML frontmatter from chapter content.

    Args:
        content: Full file content that may start with frontmatter

    Returns:
        Tuple of (metadata_dict, remaining_content).
        If no valid frontmatter found, returns (None, original_content).
    """
    if not content.startswith("---\n"):
        return None, content

    end_pos = content.find("\n---\n", 3)
    if end_pos == -1:
        if content.rstrip().endswith("\n---"):
            end_pos = content.rstrip().rfind("\n---")
        else:
            return None, content

    yaml_content = content[4:end_pos]

    try:
        metadata = yaml.safe_load(yaml_content)
        if not isinstance(metadata, dict):
            return None, content
    except yaml.YAMLError:
        return None, content

    remaining_start = end_pos + 5  # len("\n---\n")

    # Skip one blank line if present
    if remaining_start < len(content) and content[remaining_start] == "\n":
        remaining_start += 1

    return metadata, content[remaining_start:]


def strip_frontmatter(content: str) -> str:
    """Return the markdown body with any frontmatter removed."""
    return parse_frontmatter(content)[1]
