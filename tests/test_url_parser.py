"""Repository URL parser tests."""

import pytest

from repodocs.errors import ValidationError
from repodocs.repo.url_parser import (
    format_file_size,
    is_valid_repo_url,
    normalize_repo_url,
    parse_repo_url,
)


class TestParseRepoUrl:
    """Tests for parse_repo_url."""

    def test_https_url(self):
        """A plain HTTPS URL yields owner and repo with no branch."""
        parsed = parse_repo_url("https://github.com/octocat/Hello-World")

        assert parsed.owner == "octocat"
        assert parsed.repo == "Hello-World"
        assert parsed.branch is None
        assert parsed.full_name == "octocat/Hello-World"

    def test_git_suffix_is_stripped(self):
        """A trailing .git is not part of the repository name."""
        parsed = parse_repo_url("https://github.com/octocat/Hello-World.git")

        assert parsed.repo == "Hello-World"

    def test_shorthand(self):
        """owner/repo shorthand is accepted."""
        parsed = parse_repo_url("pallets/flask")

        assert (parsed.owner, parsed.repo) == ("pallets", "flask")

    def test_shorthand_with_ref(self):
        """owner/repo#ref carries a branch."""
        assert parse_repo_url("pallets/flask#stable").branch == "stable"
        assert parse_repo_url("pallets/flask@2.3.x").branch == "2.3.x"

    def test_tree_url_takes_first_segment_as_ref(self):
        """/tree/<ref>/<path> uses the first segment as the ref and the rest as a path."""
        parsed = parse_repo_url("https://github.com/vercel/next.js/tree/canary/packages/next")

        assert parsed.branch == "canary"
        assert parsed.path == "packages/next"

    def test_blob_url_splits_at_file(self):
        """/blob/ URLs keep multi-segment refs up to the first file-like segment."""
        parsed = parse_repo_url("https://github.com/owner/repo/blob/feature/login/src/app.ts")

        assert parsed.branch == "feature/login"
        assert parsed.path == "src/app.ts"

    def test_ssh_url(self):
        """SSH clone URLs are accepted."""
        parsed = parse_repo_url("git@github.com:torvalds/linux.git")

        assert (parsed.owner, parsed.repo) == ("torvalds", "linux")

    def test_api_url(self):
        """API repository URLs are accepted."""
        parsed = parse_repo_url("https://api.github.com/repos/psf/requests")

        assert (parsed.owner, parsed.repo) == ("psf", "requests")

    def test_raw_url(self):
        """raw.githubusercontent.com URLs carry the ref and file path."""
        parsed = parse_repo_url("https://raw.githubusercontent.com/psf/requests/main/setup.py")

        assert parsed.branch == "main"
        assert parsed.path == "setup.py"

    def test_release_tag_url(self):
        """Release tag URLs use the tag as the ref."""
        parsed = parse_repo_url("https://github.com/psf/requests/releases/tag/v2.31.0")

        assert parsed.branch == "v2.31.0"

    @pytest.mark.parametrize(
        "url",
        [
            "",
            "   ",
            "not-a-url",
            "https://gitlab.com/owner/repo",
            "https://github.com/owner",
            "https://github.com/-bad-/repo",
        ],
    )
    def test_invalid_references_raise(self, url):
        """Unrecognizable references raise ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            parse_repo_url(url)

        assert exc_info.value.kind == "validation"


def test_is_valid_repo_url():
    """is_valid_repo_url never raises."""
    assert is_valid_repo_url("octocat/Hello-World")
    assert not is_valid_repo_url("not-a-url")


def test_normalize_repo_url_is_canonical():
    """Different spellings of one repository normalize to the same URL."""
    expected = "https://github.com/octocat/hello-world"

    assert normalize_repo_url("https://github.com/Octocat/Hello-World.git") == expected
    assert normalize_repo_url("octocat/Hello-World") == expected
    assert normalize_repo_url("git@github.com:octocat/Hello-World.git") == expected


@pytest.mark.parametrize(
    ("size", "expected"),
    [(512, "512 B"), (2048, "2.0 KB"), (5 * 1024 * 1024, "5.00 MB")],
)
def test_format_file_size(size, expected):
    """Sizes are shown in B, KB or MB."""
    assert format_file_size(size) == expected
