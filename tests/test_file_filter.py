"""File filtering tests."""

import pytest

from repodocs.repo.file_filter import (
    FileFilter,
    detect_language,
    is_binary_content,
    is_minified_content,
)


def test_binary_detection_uses_null_byte():
    """A null byte in the sniffed prefix marks content as binary."""
    assert is_binary_content(b"\x89PNG\r\n\x1a\n\x00\x00")
    assert not is_binary_content(b"def main():\n    pass\n")


def test_binary_detection_only_checks_prefix():
    """Null bytes past the sniffed prefix are ignored."""
    data = b"a" * 100 + b"\x00"

    assert not is_binary_content(data, check_bytes=64)
    assert is_binary_content(data, check_bytes=128)


def test_minified_detection():
    """Very long average line length marks content as minified."""
    minified = "var a=1;" * 200
    normal = "\n".join(f"const value{i} = {i};" for i in range(50))

    assert is_minified_content(minified)
    assert not is_minified_content(normal)


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("src/app.TS", "ts"),
        ("lib/module.py", "py"),
        ("Makefile", None),
        (".gitignore", None),
        ("archive.tar.gz", "gz"),
    ],
)
def test_detect_language(path, expected):
    """Language is the lowercased extension of the file name."""
    assert detect_language(path) == expected


class TestFileFilter:
    """Tests for FileFilter."""

    def test_uses_configured_size_limit(self):
        """The size ceiling comes from the argument in KB."""
        file_filter = FileFilter(max_file_size_kb=1)

        assert file_filter.is_oversized(2048)
        assert not file_filter.is_oversized(512)
        assert not file_filter.is_oversized(None)

    def test_default_size_limit_from_settings(self, data_dir):
        """Without an argument the limit comes from config.ini."""
        (data_dir / "config.ini").write_text("[crawl]\nmax_file_size_kb = 2\n")

        file_filter = FileFilter()

        assert file_filter.max_file_size_bytes == 2048

    def test_check_content_reasons(self):
        """check_content names why downloaded bytes were rejected."""
        file_filter = FileFilter(max_file_size_kb=1)

        assert file_filter.check_content(b"x" * 2000) == "File too large"
        assert file_filter.check_content(b"abc\x00def") == "Binary content"
        assert file_filter.check_content(("x" * 600).encode()) == "Minified content"
        assert file_filter.check_content(b"print('hello')\n") is None

    def test_extra_excludes(self):
        """Extra exclude globs are honoured."""
        file_filter = FileFilter(extra_excludes=["**/fixtures/**"])

        assert not file_filter.classify("src/fixtures/data.json").included
        assert file_filter.classify("src/data.json").included
