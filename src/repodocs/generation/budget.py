"""Content budgeting for LLM prompts.

Turns crawled files into a bounded context string. Architecture mode keeps
only declarations (signature extraction); tutorial mode keeps literal
content, trimmed to a head/tail line budget. Files are ordered so entry
points survive when an aggregate character ceiling cuts the list short.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from repodocs.constants.generation import (
    DEFAULT_FILE_PRIORITY,
    HEAD_RATIO,
    MAX_LINES_PER_FILE,
)


class BudgetMode(str, Enum):
    """How file content is condensed."""

    ARCHITECTURE = "architecture"
    TUTORIAL = "tutorial"


@dataclass
class BudgetedContext:
    """Context string plus bookkeeping for one prompt."""

    context: str
    file_info: list[tuple[int, str]] = field(default_factory=list)
    files_included: int = 0
    files_skipped: int = 0

    @property
    def total_chars(self) -> int:
        return len(self.context)


# Lower index means higher priority. Anything unmatched sorts last.
PRIORITY_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"page\.(tsx?|jsx?)$"),
    re.compile(r"index\.(tsx?|jsx?|py)$"),
    re.compile(r"main\.(tsx?|jsx?|py|go|rs)$"),
    re.compile(r"app\.(tsx?|jsx?|py)$"),
    re.compile(r"route\.(tsx?|jsx?)$"),
    re.compile(r"layout\.(tsx?|jsx?)$"),
    re.compile(r"/(api|lib|utils|components)/"),
]

FILE_TYPE_LABELS = {
    "tsx": "React Component/Page",
    "ts": "TypeScript Module",
    "jsx": "React Component",
    "js": "JavaScript Module",
    "py": "Python Module",
    "java": "Java Class",
    "cs": "C# Class",
    "go": "Go Package",
    "rs": "Rust Module",
    "md": "Documentation",
    "json": "Configuration",
    "yaml": "Configuration",
    "yml": "Configuration",
}


def file_priority(path: str) -> int:
    """Rank a path by architectural significance (0 is most significant)."""
    for rank, pattern in enumerate(PRIORITY_PATTERNS):
        if pattern.search(path):
            return rank
    return DEFAULT_FILE_PRIORITY


def get_file_type_label(path: str) -> str:
    """Human-readable label for a file, keyed by extension."""
    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return FILE_TYPE_LABELS.get(extension, "Source File")


def split_line_budget(max_lines_per_file: int, head_ratio: float = HEAD_RATIO) -> tuple[int, int]:
    """Split a per-file line budget into (head, tail) line counts."""
    head = int(max_lines_per_file * head_ratio)
    return head, max_lines_per_file - head


def truncate_file_content(content: str, max_start_lines: int, max_end_lines: int) -> str:
    """Keep the first and last lines of a file with an omission marker between.

    The marker occupies exactly one line, and content of up to
    ``max_start_lines + max_end_lines + 1`` lines passes through unchanged,
    so truncating already-truncated output is a no-op.

    Args:
        content: File content.
        max_start_lines: Lines kept from the head.
        max_end_lines: Lines kept from the tail.

    Returns:
        Original or truncated content.
    """
    lines = content.split("\n")
    total_lines = len(lines)
    if total_lines <= max_start_lines + max_end_lines + 1:
        return content

    omitted = total_lines - max_start_lines - max_end_lines
    marker = (
        f"// ... [{omitted} lines omitted for brevity - file has {total_lines} total lines] ..."
    )
    head = lines[:max_start_lines]
    tail = lines[total_lines - max_end_lines :] if max_end_lines > 0 else []
    return "\n".join([*head, marker, *tail])


# =============================================================================
# Signature Extraction
# =============================================================================

ELIDED = "{ /* ... */ }"

JS_FUNCTION_RE = re.compile(r"^(export\s+)?(default\s+)?(async\s+)?function\b")
JS_ARROW_RE = re.compile(
    r"^(export\s+)?(const|let|var)\s+\w+\s*(:[^=]+)?=\s*(async\s+)?(\([^)]*\)|\w+)\s*(:[^=]+)?=>"
)
JS_FUNCTION_EXPR_RE = re.compile(r"^(export\s+)?(const|let|var)\s+\w+\s*=\s*(async\s+)?function\b")
JS_CLASS_RE = re.compile(r"^(export\s+)?(default\s+)?(abstract\s+)?class\s+\w+")
JS_METHOD_RE = re.compile(
    r"^(public\s+|private\s+|protected\s+)?(static\s+)?(async\s+)?(get\s+|set\s+)?"
    r"(constructor|[A-Za-z_$][\w$]*)\s*(<[^>]*>)?\s*\("
)
JS_BLOCK_DECL_RE = re.compile(r"^(export\s+)?(declare\s+)?(interface|type|enum)\s+\w+")
JS_KEYWORDS = frozenset(["if", "for", "while", "switch", "catch", "return", "function"])

PY_SIGNATURE_RE = re.compile(r"^(\s*)(async\s+def|def|class)\s+\w+")
PY_IMPORT_RE = re.compile(r"^(import|from)\s+\S+")

OTHER_SIGNATURE_RE = re.compile(
    r"^(pub(\([^)]*\))?\s+)?(async\s+)?(fn|func|struct|trait|impl|enum|interface|type)\b"
    r"|^(public|private|protected|internal)\s+.*[({]\s*$"
)


def _brace_delta(line: str) -> int:
    return line.count("{") - line.count("}")


def _signature_head(line: str) -> str:
    """Declaration text before the body opens."""
    head = line.split("{", 1)[0]
    if "=>" in head:
        head = head.split("=>", 1)[0] + "=>"
    return head.rstrip().rstrip("=").rstrip()


def _extract_js_signatures(lines: list[str]) -> list[str]:
    signatures: list[str] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        stripped = line.strip()
        i += 1
        if not stripped or stripped.startswith(("//", "/*", "*")):
            continue

        if stripped.startswith("import "):
            signatures.append(line)
            # Multi-line import: keep consuming until the brace closes
            open_brace = "{" in stripped and "}" not in stripped
            while open_brace and i < len(lines):
                signatures.append(lines[i])
                open_brace = "}" not in lines[i]
                i += 1
            continue

        if JS_BLOCK_DECL_RE.match(stripped):
            block = [line]
            depth = _brace_delta(stripped)
            while depth > 0 and i < len(lines):
                block.append(lines[i])
                depth += _brace_delta(lines[i])
                i += 1
            signatures.append("\n".join(block))
            continue

        if JS_CLASS_RE.match(stripped):
            signatures.append(f"{_signature_head(stripped)} {{")
            depth = _brace_delta(stripped)
            while depth > 0 and i < len(lines):
                member = lines[i].strip()
                method = JS_METHOD_RE.match(member) if depth == 1 else None
                if method and method.group(5) not in JS_KEYWORDS:
                    signatures.append(f"  {_signature_head(member)} {ELIDED}")
                depth += _brace_delta(member)
                i += 1
            signatures.append("}")
            continue

        if (
            JS_FUNCTION_RE.match(stripped)
            or JS_ARROW_RE.match(stripped)
            or JS_FUNCTION_EXPR_RE.match(stripped)
        ):
            signatures.append(f"{_signature_head(stripped)} {ELIDED}")
            depth = _brace_delta(stripped)
            while depth > 0 and i < len(lines):
                depth += _brace_delta(lines[i])
                i += 1
            continue

        if stripped.startswith("export "):
            signatures.append(line)

    return signatures


def _extract_python_signatures(lines: list[str]) -> list[str]:
    signatures: list[str] = []
    for line in lines:
        stripped = line.strip()
        if PY_IMPORT_RE.match(line) or stripped.startswith("@"):
            signatures.append(line.rstrip())
            continue
        match = PY_SIGNATURE_RE.match(line)
        if match:
            signatures.append(line.rstrip().rstrip(":") + ": ...")
    return signatures


def _extract_generic_signatures(lines: list[str]) -> list[str]:
    signatures: list[str] = []
    for line in lines:
        stripped = line.strip()
        if stripped.startswith(("import ", "use ", "package ", "#include")):
            signatures.append(line.rstrip())
        elif OTHER_SIGNATURE_RE.match(stripped):
            signatures.append(f"{_signature_head(stripped)} {ELIDED}")
    return signatures


def extract_file_signatures(content: str, file_path: str) -> str:
    """Reduce a file to its declarations, prefixed with a file-type label.

    Args:
        content: File content.
        file_path: Repository-relative path (selects the language rules).

    Returns:
        ``// <label>: <path>`` followed by one declaration per line.
    """
    lines = content.split("\n")
    extension = file_path.rsplit(".", 1)[-1].lower() if "." in file_path else ""
    if extension in ("ts", "tsx", "js", "jsx", "mjs", "cjs"):
        signatures = _extract_js_signatures(lines)
    elif extension == "py":
        signatures = _extract_python_signatures(lines)
    else:
        signatures = _extract_generic_signatures(lines)
    return f"// {get_file_type_label(file_path)}: {file_path}\n" + "\n".join(signatures)


# =============================================================================
# Context Assembly
# =============================================================================


def build_file_context(
    files: Sequence[tuple[str, str]],
    mode: BudgetMode | str = BudgetMode.TUTORIAL,
    max_lines_per_file: int = MAX_LINES_PER_FILE,
    max_context_chars: int | None = None,
    head_ratio: float = HEAD_RATIO,
) -> BudgetedContext:
    """Build a bounded context string from (path, content) pairs.

    File indices always refer to positions in ``files``, independent of the
    priority ordering used for budgeting.

    Args:
        files: Crawled (path, content) pairs.
        mode: Architecture (signatures) or tutorial (head/tail truncation).
        max_lines_per_file: Line budget per file in tutorial mode.
        max_context_chars: Aggregate ceiling. None or 0 disables it. Once an
            entry would cross the ceiling, it and every later file are skipped.
        head_ratio: Share of each line budget kept from the start of a file.

    Returns:
        BudgetedContext with included and skipped counts.
    """
    mode = BudgetMode(mode)
    head, tail = split_line_budget(max_lines_per_file, head_ratio)

    processed: list[tuple[int, str, str]] = []
    for index, (path, content) in enumerate(files):
        if mode is BudgetMode.ARCHITECTURE:
            condensed = extract_file_signatures(content, path)
        else:
            condensed = truncate_file_content(content, head, tail)
        processed.append((index, path, condensed))

    # sorted() is stable, so equal priorities keep crawl order
    processed = sorted(processed, key=lambda item: file_priority(item[1]))

    entries: list[str] = []
    file_info: list[tuple[int, str]] = []
    used = 0
    skipped = 0
    exhausted = False
    for index, path, condensed in processed:
        entry = f"--- File Index {index}: {path} ---\n{condensed}\n\n"
        if exhausted or (max_context_chars and used + len(entry) > max_context_chars):
            exhausted = True
            skipped += 1
            continue
        entries.append(entry)
        file_info.append((index, path))
        used += len(entry)

    return BudgetedContext(
        context="".join(entries),
        file_info=file_info,
        files_included=len(file_info),
        files_skipped=skipped,
    )


def build_file_listing(file_info: Iterable[tuple[int, str]]) -> str:
    """Render ``- <index> # <path>`` lines for prompts."""
    return "\n".join(f"- {index} # {path}" for index, path in file_info)


def get_content_for_indices(
    files: Sequence[tuple[str, str]],
    indices: Iterable[int],
    max_lines_per_file: int | None = None,
    head_ratio: float = HEAD_RATIO,
) -> dict[str, str]:
    """Map ``"<index> # <path>"`` to (optionally truncated) content.

    Out-of-range indices are ignored.
    """
    contents: dict[str, str] = {}
    if max_lines_per_file is not None:
        head, tail = split_line_budget(max_lines_per_file, head_ratio)
    for index in indices:
        if 0 <= index < len(files):
            path, content = files[index]
            if max_lines_per_file is not None:
                content = truncate_file_content(content, head, tail)
            contents[f"{index} # {path}"] = content
    return contents


def format_file_contents(contents: dict[str, str]) -> str:
    """Render a get_content_for_indices mapping as a prompt section."""
    return "\n\n".join(f"--- File: {key} ---\n{content}" for key, content in contents.items())


# Line budgets tried, in order, when a file section must shrink
SHRINK_LINE_BUDGETS = (100, 60, 30, 15, 8)


def fit_file_contents(
    contents: dict[str, str], max_chars: int, head_ratio: float = HEAD_RATIO
) -> str:
    """Render a file section no longer than ``max_chars``.

    Each file's line budget is tightened step by step; if the smallest
    budget still does not fit, trailing files are dropped.
    """
    text = format_file_contents(contents)
    if len(text) <= max_chars:
        return text

    shrunk = contents
    for lines in SHRINK_LINE_BUDGETS:
        head, tail = split_line_budget(lines, head_ratio)
        shrunk = {key: truncate_file_content(value, head, tail) for key, value in contents.items()}
        text = format_file_contents(shrunk)
        if len(text) <= max_chars:
            return text

    keys = list(shrunk)
    while keys:
        keys.pop()
        text = format_file_contents({key: shrunk[key] for key in keys})
        if len(text) <= max_chars:
            return text
    return ""
