"""Slugs and filenames for generated documentation."""

import re
import secrets
import string
from datetime import datetime, timezone
from typing import Optional

SLUG_MAX_LENGTH = 50
SAFE_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")
_RANDOM_ALPHABET = string.ascii_lowercase + string.digits


def slugify(text: str) -> str:
    """Lowercase ``text`` and reduce it to ``[a-z0-9-]``.

    Characters outside that set are dropped, whitespace runs become a
    single dash and repeated dashes collapse.
    """
    result = text.lower()
    result = re.sub(r"[^a-z0-9\s-]", "", result)
    result = re.sub(r"\s+", "-", result.strip())
    return re.sub(r"-+", "-", result)


def create_chapter_filename(order: int, title: str) -> str:
    """``{order:02d}_{slug}.md``, with the slug cut to 50 characters."""
    return f"{order:02d}_{slugify(title)[:SLUG_MAX_LENGTH]}.md"


def generate_project_slug(owner: str, repo: str, now: Optional[datetime] = None) -> str:
    """Unique slug ``<owner>-<repo>-YYYYMMDD-<random6>``."""
    now = now or datetime.now(timezone.utc)
    safe_name = slugify(f"{owner}-{repo}")[:SLUG_MAX_LENGTH].strip("-") or "project"
    suffix = "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(6))
    return f"{safe_name}-{now:%Y%m%d}-{suffix}"


def is_safe_slug(slug: str) -> bool:
    """Whether ``slug`` is usable as a single path segment and URL component."""
    return bool(slug) and len(slug) <= 200 and bool(SAFE_SLUG_RE.match(slug))
