"""Documentation generation configuration.

These settings control how crawled files are budgeted into LLM context and
how the staged pipeline produces chapters.
"""

# =============================================================================
# Content Budget
# =============================================================================
# In tutorial mode each file keeps its first HEAD_RATIO share of
# MAX_LINES_PER_FILE lines and the remainder from its tail. Head keeps
# imports and definitions, tail usually holds exports and usage.

MAX_LINES_PER_FILE = 150
HEAD_RATIO = 0.8

# 0 disables the aggregate character ceiling.
MAX_CONTEXT_CHARS = 0

# Files with no priority pattern match sort after every prioritised file.
DEFAULT_FILE_PRIORITY = 999

# =============================================================================
# Pipeline
# =============================================================================
# MAX_ABSTRACTIONS bounds the first stage. CHAPTER_MAX_TOKENS caps the
# response size for each chapter call. PARALLEL_CHAPTERS > 1 lets chapter
# calls run concurrently; progress is still reported in plan order.

MAX_ABSTRACTIONS = 8
CHAPTER_MAX_TOKENS = 4000
PARALLEL_CHAPTERS = 1
DEFAULT_LANGUAGE = "english"

# =============================================================================
# Progress
# =============================================================================
# Percent complete reported at each stage. The writing stage spreads its
# progress linearly between WRITING_START and WRITING_END.

PROGRESS_INITIALIZING = 0
PROGRESS_CRAWLING = 5
PROGRESS_ANALYZING = 15
PROGRESS_MAPPING = 22
PROGRESS_ORDERING = 28
PROGRESS_WRITING_START = 30
PROGRESS_WRITING_END = 90
PROGRESS_FINALIZING = 92
PROGRESS_COMPLETE = 100

# =============================================================================
# Overview Diagram
# =============================================================================
# Edge labels longer than this are cut with an ellipsis so the rendered
# flowchart stays readable.

DIAGRAM_LABEL_MAX_LENGTH = 30
OVERVIEW_FILENAME = "-1_overview.md"
OVERVIEW_ALIAS = "index.md"
OVERVIEW_ORDER = -1
