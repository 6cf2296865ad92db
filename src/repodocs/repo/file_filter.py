"""File filtering for crawled repository blobs.

Combines the path classifier from :mod:`repodocs.repo.patterns` with the
size, binary and minified checks applied to remote blobs. Path and size
checks run on tree metadata before any content is fetched; the content
checks run on the downloaded bytes.
"""

from typing import Optional

from repodocs.config import ConfigError, load_settings
from repodocs.constants.files import (
    BINARY_CHECK_BYTES,
    MAX_FILE_SIZE_KB,
    MINIFIED_AVG_LINE_LENGTH,
    MINIFIED_SAMPLE_LINES,
)
from repodocs.repo.patterns import (
    DEFAULT_PATTERN_SET,
    FilterDecision,
    PatternSet,
    build_pattern_set,
)


def is_binary_content(data: bytes, check_bytes: int = BINARY_CHECK_BYTES) -> bool:
    """Check if content appears to be binary.

    Args:
        data: Raw blob bytes.
        check_bytes: Number of leading bytes to inspect.

    Returns:
        True if a null byte appears in the inspected prefix.
    """
    return b"\x00" in data[:check_bytes]


def is_minified_content(text: str, threshold: int = MINIFIED_AVG_LINE_LENGTH) -> bool:
    """Check if text appears to be minified based on line length.

    Minified files typically have extremely long lines (often the
    entire file on one line). We sample the first lines and check if
    the average length exceeds the threshold.

    Args:
        text: Decoded file content.
        threshold: Average line length above which the file counts as minified.

    Returns:
        True if file appears to be minified.
    """
    lines = text.split("\n")[:MINIFIED_SAMPLE_LINES]
    if not lines:
        return False
    avg_length = sum(len(line) for line in lines) / len(lines)
    return avg_length > threshold


def detect_language(path: str) -> str | None:
    """Return the lowercased extension used for language stats, if any."""
    name = path.rsplit("/", 1)[-1]
    if "." not in name.lstrip("."):
        return None
    return name.rsplit(".", 1)[-1].lower()


class FileFilter:
    """Decide which remote files are worth downloading."""

    def __init__(
        self,
        max_file_size_kb: Optional[int] = None,
        binary_check_bytes: Optional[int] = None,
        extra_excludes: list[str] | None = None,
        pattern_set: PatternSet | None = None,
    ):
        """Initialize file filter.

        Args:
            max_file_size_kb: Maximum file size in KB. If None, uses settings or default (500).
            binary_check_bytes: Bytes sniffed for binary detection. If None, uses settings.
            extra_excludes: Additional exclude globs layered on the default categories.
            pattern_set: Explicit category tables; overrides extra_excludes.
        """
        default_max_file_size_kb = MAX_FILE_SIZE_KB
        default_binary_check_bytes = BINARY_CHECK_BYTES
        try:
            settings = load_settings()
            default_max_file_size_kb = settings.crawl.max_file_size_kb
            default_binary_check_bytes = settings.crawl.binary_check_bytes
        except (ValueError, OSError, ConfigError):
            # Settings not available, use defaults
            pass

        if max_file_size_kb is None:
            max_file_size_kb = default_max_file_size_kb
        self.max_file_size_bytes = max_file_size_kb * 1024
        self.binary_check_bytes = binary_check_bytes or default_binary_check_bytes

        if pattern_set is not None:
            self.pattern_set = pattern_set
        elif extra_excludes:
            self.pattern_set = build_pattern_set(extra_excludes=extra_excludes)
        else:
            self.pattern_set = DEFAULT_PATTERN_SET

    def classify(self, path: str) -> FilterDecision:
        """Classify a path against the include/exclude categories."""
        return self.pattern_set.classify(path)

    def is_oversized(self, size: int | None) -> bool:
        """Check a blob's size (from tree metadata) against the ceiling."""
        return size is not None and size > self.max_file_size_bytes

    def check_content(self, data: bytes) -> str | None:
        """Return a skip reason for downloaded bytes, or None to accept them."""
        if len(data) > self.max_file_size_bytes:
            return "File too large"
        if is_binary_content(data, self.binary_check_bytes):
            return "Binary content"
        if is_minified_content(data.decode("utf-8", errors="replace")):
            return "Minified content"
        return None
