"""Extract and validate structured output from model responses.

Extraction never raises: a missing fenced block yields None, leaving the
retry decision to the caller. Parsing raises :class:`ParseError`, which the
orchestrator answers with one corrective re-prompt.
"""

from __future__ import annotations

import re
from typing import Any

import yaml

from repodocs.errors import ParseError
from repodocs.generation.models import Abstraction, ProjectAnalysis, Relationship

YAML_BLOCK_RE = re.compile(r"```ya?ml\s*([\s\S]*?)\s*```")
JSON_BLOCK_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")
LEADING_INT_RE = re.compile(r"^\s*(-?\d+)")


def _extract_block(pattern: re.Pattern[str], response: str | None) -> str | None:
    if not response:
        return None
    match = pattern.search(response)
    if match is None:
        return None
    return match.group(1).strip() or None


def extract_yaml_block(response: str | None) -> str | None:
    """Return the inner text of the first ```yaml fenced block, or None."""
    return _extract_block(YAML_BLOCK_RE, response)


def extract_json_block(response: str | None) -> str | None:
    """Return the inner text of the first ```json fenced block, or None."""
    return _extract_block(JSON_BLOCK_RE, response)


def load_yaml_block(response: str | None, stage: str) -> Any:
    """Extract and parse the YAML block of a stage response.

    Raises:
        ParseError: If there is no block or it is not valid YAML.
    """
    block = extract_yaml_block(response)
    if block is None:
        raise ParseError(stage, "response did not contain a ```yaml block")
    try:
        return yaml.safe_load(block)
    except yaml.YAMLError as e:
        raise ParseError(stage, f"invalid YAML: {e}") from e


def parse_index(value: Any, upper_bound: int, stage: str, what: str) -> int:
    """Parse an ``int`` or ``"<int> # comment"`` reference and range-check it.

    Args:
        value: Raw YAML value.
        upper_bound: Exclusive upper bound for valid indices.
        stage: Stage name for error messages.
        what: Description of the value for error messages.

    Raises:
        ParseError: If no integer can be read or it is out of range.
    """
    if isinstance(value, bool):
        raise ParseError(stage, f"could not read an index from {what}: {value!r}")
    if isinstance(value, int):
        index = value
    else:
        match = LEADING_INT_RE.match(str(value))
        if match is None:
            raise ParseError(stage, f"could not read an index from {what}: {value!r}")
        index = int(match.group(1))
    if not 0 <= index < upper_bound:
        raise ParseError(stage, f"index {index} in {what} is out of range (0-{upper_bound - 1})")
    return index


def parse_abstractions(response: str | None, file_count: int) -> list[Abstraction]:
    """Parse stage one: a YAML list of name/description/file_indices.

    File indices are deduplicated and sorted.

    Raises:
        ParseError: On a missing block, wrong shape or invalid index.
    """
    stage = "identify_abstractions"
    data = load_yaml_block(response, stage)
    if not isinstance(data, list) or not data:
        raise ParseError(stage, "expected a non-empty YAML list of abstractions")

    abstractions = []
    for position, item in enumerate(data):
        if not isinstance(item, dict) or not item.get("name") or not item.get("description"):
            raise ParseError(stage, f"abstraction {position} needs a name and a description")
        raw_indices = item.get("file_indices") or []
        if not isinstance(raw_indices, list):
            raise ParseError(stage, f"file_indices of abstraction {position} is not a list")
        indices = {
            parse_index(entry, file_count, stage, f"file_indices of {item['name']!r}")
            for entry in raw_indices
        }
        abstractions.append(
            Abstraction(
                index=position,
                name=str(item["name"]).strip(),
                description=str(item["description"]).strip(),
                file_indices=tuple(sorted(indices)),
            )
        )
    return abstractions


def parse_relationships(response: str | None, abstraction_count: int) -> ProjectAnalysis:
    """Parse stage two: ``summary`` plus a ``relationships`` list.

    Raises:
        ParseError: On a missing block, wrong shape or invalid index.
    """
    stage = "analyze_relationships"
    data = load_yaml_block(response, stage)
    if (
        not isinstance(data, dict)
        or not data.get("summary")
        or not isinstance(data.get("relationships"), list)
    ):
        raise ParseError(stage, "expected a mapping with `summary` and a `relationships` list")

    relationships = []
    for position, item in enumerate(data["relationships"]):
        if not isinstance(item, dict) or "label" not in item:
            raise ParseError(stage, f"relationship {position} is malformed")
        relationships.append(
            Relationship(
                from_index=parse_index(
                    item.get("from_abstraction"), abstraction_count, stage, f"relationship {position}"
                ),
                to_index=parse_index(
                    item.get("to_abstraction"), abstraction_count, stage, f"relationship {position}"
                ),
                label=str(item["label"]).strip(),
            )
        )
    return ProjectAnalysis(summary=str(data["summary"]).strip(), relationships=tuple(relationships))


def validate_chapter_plan(order: list[int], abstraction_count: int) -> list[int]:
    """Check that a plan lists every abstraction index exactly once.

    Raises:
        ParseError: On duplicates, out-of-range values or omissions.
    """
    stage = "order_chapters"
    seen: set[int] = set()
    for index in order:
        if not 0 <= index < abstraction_count:
            raise ParseError(stage, f"index {index} is out of range")
        if index in seen:
            raise ParseError(stage, f"duplicate index {index} in chapter order")
        seen.add(index)
    missing = [i for i in range(abstraction_count) if i not in seen]
    if missing:
        raise ParseError(stage, f"missing indices: {', '.join(str(i) for i in missing)}")
    return list(order)


def parse_chapter_order(response: str | None, abstraction_count: int) -> list[int]:
    """Parse stage three: a YAML list of ``index # Name`` entries.

    Raises:
        ParseError: On a missing block or an invalid plan.
    """
    stage = "order_chapters"
    data = load_yaml_block(response, stage)
    if not isinstance(data, list):
        raise ParseError(stage, "expected a YAML list of abstraction indices")
    order = [
        parse_index(entry, abstraction_count, stage, f"position {position}")
        for position, entry in enumerate(data)
    ]
    return validate_chapter_plan(order, abstraction_count)
