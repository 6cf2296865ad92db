"""Configuration constants.

Re-exports all constants for convenient importing:
    from repodocs.constants import MAX_FILE_SIZE_KB, CHARS_PER_TOKEN
"""

from repodocs.constants.files import *  # noqa: F403
from repodocs.constants.generation import *  # noqa: F403
from repodocs.constants.llm import *  # noqa: F403
