"""Documentation generation pipeline module.

The orchestrator lives in :mod:`repodocs.generation.orchestrator` and is not
re-exported here, since it depends on the output store, which depends on
this package.
"""

from repodocs.generation.budget import (
    BudgetedContext,
    BudgetMode,
    build_file_context,
    extract_file_signatures,
    truncate_file_content,
)
from repodocs.generation.models import (
    Abstraction,
    Chapter,
    ProjectAnalysis,
    ProjectDoc,
    Relationship,
)
from repodocs.generation.overview import OverviewGenerator
from repodocs.generation.responses import extract_json_block, extract_yaml_block

__all__ = [
    # Budgeting
    "BudgetMode",
    "BudgetedContext",
    "build_file_context",
    "extract_file_signatures",
    "truncate_file_content",
    # Models
    "Abstraction",
    "Chapter",
    "ProjectAnalysis",
    "ProjectDoc",
    "Relationship",
    # Overview
    "OverviewGenerator",
    # Response parsing
    "extract_json_block",
    "extract_yaml_block",
]
