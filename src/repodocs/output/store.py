"""Filesystem store for generated documentation.

Each project lives in ``<root>/<slug>/`` with one markdown file per chapter
and a ``_meta.json`` file. A project is written into
``<root>/<slug><staging_suffix>`` first and only moved into place once every
file is on disk, so readers never see a project with missing chapters.
"""

from __future__ import annotations

import io
import json
import logging
import re
import shutil
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from repodocs.config import ConfigError, load_settings
from repodocs.constants.generation import OVERVIEW_ALIAS, OVERVIEW_FILENAME
from repodocs.errors import NotFoundError, StorageError, ValidationError
from repodocs.generation.frontmatter import build_frontmatter, parse_frontmatter
from repodocs.generation.models import ProjectDoc
from repodocs.output.naming import is_safe_slug

logger = logging.getLogger(__name__)

META_FILENAME = "_meta.json"
CHAPTER_FILENAME_RE = re.compile(r"^-?[A-Za-z0-9][A-Za-z0-9_.-]*\.md$")


def prepare_staging_directory(staging_path: Path) -> None:
    """Create an empty staging directory, wiping leftovers from an interrupted save."""
    if staging_path.exists():
        shutil.rmtree(staging_path)
    staging_path.mkdir(parents=True)


def promote_staging_to_production(staging_path: Path, production_path: Path) -> None:
    """Move a completed staging directory into its final location."""
    if production_path.exists():
        shutil.rmtree(production_path)
    shutil.move(str(staging_path), str(production_path))


def _check_filename(filename: str) -> None:
    if not CHAPTER_FILENAME_RE.match(filename) or ".." in filename:
        raise ValidationError(f"Invalid chapter filename: {filename!r}")


def _overview_alternative(filename: str) -> Optional[str]:
    if filename == OVERVIEW_FILENAME:
        return OVERVIEW_ALIAS
    if filename == OVERVIEW_ALIAS:
        return OVERVIEW_FILENAME
    return None


class OutputStore:
    """Saves, lists, reads and deletes generated projects.

    Args:
        root: Directory holding one subdirectory per project. Defaults to
            the configured output path.
        staging_suffix: Suffix of in-progress project directories.
    """

    def __init__(self, root: Optional[Path] = None, staging_suffix: Optional[str] = None):
        if root is None or staging_suffix is None:
            try:
                settings = load_settings()
                root = root or settings.output_path
                staging_suffix = staging_suffix or settings.paths.staging_suffix
            except (ValueError, OSError, ConfigError):
                root = root or Path.home() / ".repodocs" / "docs-output"
                staging_suffix = staging_suffix or ".building"
        self.root = Path(root)
        self.staging_suffix = staging_suffix

    def _project_path(self, slug: str) -> Path:
        if not is_safe_slug(slug) or slug.endswith(self.staging_suffix):
            raise ValidationError(f"Invalid project slug: {slug!r}")
        path = (self.root / slug).resolve()
        if path.parent != self.root.resolve():
            raise ValidationError(f"Invalid project slug: {slug!r}")
        return path

    def exists(self, slug: str) -> bool:
        return (self._project_path(slug) / META_FILENAME).is_file()

    def save(self, doc: ProjectDoc) -> Path:
        """Write every chapter plus metadata, then publish the project atomically.

        Args:
            doc: Project to persist. Its slug must not already exist.

        Returns:
            Path of the published project directory.

        Raises:
            ValidationError: If the slug or a chapter filename is unsafe.
            StorageError: If the slug is taken or the filesystem write fails.
        """
        production_path = self._project_path(doc.slug)
        if production_path.exists():
            raise StorageError(f"Project already exists: {doc.slug}")
        for chapter in doc.chapters:
            _check_filename(chapter.filename)

        staging_path = self.root / f"{doc.slug}{self.staging_suffix}"
        generated = datetime.now(timezone.utc)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            prepare_staging_directory(staging_path)
            for chapter in doc.chapters:
                frontmatter = build_frontmatter(
                    title=chapter.title,
                    order=chapter.order,
                    generated=generated,
                    abstractions_covered=chapter.abstractions_covered,
                )
                (staging_path / chapter.filename).write_text(
                    frontmatter + chapter.content, encoding="utf-8"
                )
            (staging_path / META_FILENAME).write_text(
                json.dumps(doc.meta_dict(), indent=2), encoding="utf-8"
            )
            promote_staging_to_production(staging_path, production_path)
        except OSError as e:
            shutil.rmtree(staging_path, ignore_errors=True)
            raise StorageError(f"Failed to save project {doc.slug}: {e}") from e

        logger.info(f"Saved project {doc.slug} with {len(doc.chapters)} chapters")
        return production_path

    def get_meta(self, slug: str) -> dict[str, Any]:
        """Load a project's ``_meta.json``.

        Raises:
            NotFoundError: If the project does not exist.
        """
        meta_path = self._project_path(slug) / META_FILENAME
        if not meta_path.is_file():
            raise NotFoundError(f"Project not found: {slug}")
        try:
            return json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Unreadable metadata for {slug}: {e}") from e

    def list(self, user_id: Optional[str] = None) -> list[dict[str, Any]]:
        """Metadata of every published project, newest first.

        Args:
            user_id: If given, only projects owned by this user.
        """
        if not self.root.is_dir():
            return []

        projects = []
        for entry in self.root.iterdir():
            if (
                not entry.is_dir()
                or entry.name.startswith(".")
                or entry.name.endswith(self.staging_suffix)
            ):
                continue
            meta_path = entry / META_FILENAME
            if not meta_path.is_file():
                continue
            try:
                meta = json.loads(meta_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping project {entry.name}: {e}")
                continue
            if user_id is not None and meta.get("userId") != user_id:
                continue
            projects.append(meta)

        projects.sort(key=lambda meta: meta.get("createdAt") or "", reverse=True)
        return projects

    def _chapter_path(self, slug: str, filename: str) -> Path:
        _check_filename(filename)
        project_path = self._project_path(slug)
        if not project_path.is_dir():
            raise NotFoundError(f"Project not found: {slug}")
        path = project_path / filename
        if not path.is_file():
            alternative = _overview_alternative(filename)
            if alternative and (project_path / alternative).is_file():
                return project_path / alternative
            raise NotFoundError(f"Chapter not found: {slug}/{filename}")
        return path

    def read(self, slug: str, filename: str) -> str:
        """Markdown body of a chapter with its frontmatter stripped.

        The overview resolves under either ``-1_overview.md`` or ``index.md``.

        Raises:
            ValidationError: If the slug or filename is unsafe.
            NotFoundError: If the project or chapter does not exist.
        """
        return parse_frontmatter(self.read_raw(slug, filename))[1]

    def read_raw(self, slug: str, filename: str) -> str:
        """Chapter file content including frontmatter."""
        return self._chapter_path(slug, filename).read_text(encoding="utf-8")

    def chapters(self, slug: str) -> list[dict[str, Any]]:
        """Every chapter of a project with parsed frontmatter, sorted by order."""
        project_path = self._project_path(slug)
        if not project_path.is_dir():
            raise NotFoundError(f"Project not found: {slug}")
        result = []
        for path in project_path.glob("*.md"):
            frontmatter, body = parse_frontmatter(path.read_text(encoding="utf-8"))
            result.append({"filename": path.name, "frontmatter": frontmatter, "content": body})
        result.sort(key=lambda c: (c["frontmatter"] or {}).get("order", 0))
        return result

    def update_meta(self, slug: str, **updates: Any) -> dict[str, Any]:
        """Merge ``updates`` into a project's metadata. The slug is never changed."""
        meta = self.get_meta(slug)
        meta.update(updates)
        meta["projectSlug"] = slug
        meta_path = self._project_path(slug) / META_FILENAME
        try:
            meta_path.write_text(json.dumps(meta, indent=2), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to update metadata for {slug}: {e}") from e
        return meta

    def find_linked(self, linked_project_id: str) -> Optional[dict[str, Any]]:
        """Metadata of the project linked to an external project record, if any."""
        for meta in self.list():
            if meta.get("linkedProjectId") == linked_project_id:
                return meta
        return None

    def delete(self, slug: str) -> None:
        """Remove a project and all its files.

        Raises:
            NotFoundError: If the project does not exist.
        """
        project_path = self._project_path(slug)
        if not project_path.is_dir():
            raise NotFoundError(f"Project not found: {slug}")
        try:
            shutil.rmtree(project_path)
        except OSError as e:
            raise StorageError(f"Failed to delete project {slug}: {e}") from e
        logger.info(f"Deleted project {slug}")

    def download_zip(self, slug: str) -> bytes:
        """Zip archive of a project, with every file under a ``<slug>/`` prefix.

        Raises:
            NotFoundError: If the project does not exist.
        """
        project_path = self._project_path(slug)
        if not project_path.is_dir():
            raise NotFoundError(f"Project not found: {slug}")

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in sorted(project_path.iterdir()):
                if path.is_file():
                    archive.write(path, arcname=f"{slug}/{path.name}")
        return buffer.getvalue()
