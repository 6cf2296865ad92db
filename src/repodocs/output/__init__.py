"""Persistence of generated documentation."""

from repodocs.output.naming import create_chapter_filename, generate_project_slug, slugify
from repodocs.output.store import OutputStore

__all__ = ["OutputStore", "create_chapter_filename", "generate_project_slug", "slugify"]
