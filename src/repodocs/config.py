"""Configuration system for repodocs.

This module handles loading settings from environment variables and an INI
file, providing sensible defaults, and computing derived paths for the
documentation output tree.
"""

from configparser import ConfigParser
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional
import os


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# =============================================================================
# CONFIG_SCHEMA
# =============================================================================

# Schema: section -> key -> (type, default, min, max, description)
CONFIG_SCHEMA: dict[str, dict[str, tuple[type, Any, Any, Any, str]]] = {
    "crawl": {
        "max_file_size_kb": (int, 500, 1, 10000, "Skip blobs larger than this"),
        "binary_check_bytes": (int, 1024, 64, 8192, "Bytes sniffed for binary detection"),
        "fetch_batch_size": (int, 10, 1, 50, "Concurrent blob fetches per batch"),
        "request_timeout": (float, 30.0, 1.0, 300.0, "HTTP timeout in seconds"),
        "rate_limit_warning_threshold": (
            int,
            10,
            0,
            1000,
            "Warn when remaining API requests drop below this",
        ),
    },
    "budget": {
        "max_lines_per_file": (int, 150, 10, 5000, "Line budget per file in tutorial mode"),
        "head_ratio": (float, 0.8, 0.1, 1.0, "Share of the line budget kept from the head"),
        "max_context_chars": (int, 0, 0, None, "Aggregate context ceiling (0 = unlimited)"),
        "max_abstractions": (int, 8, 2, 30, "Upper bound on identified abstractions"),
    },
    "generation": {
        "temperature": (float, 0.2, 0.0, 2.0, "LLM temperature for pipeline stages"),
        "chapter_max_tokens": (int, 4000, 256, 32768, "Response cap for chapter calls"),
        "parallel_chapters": (int, 1, 1, 16, "Concurrent chapter calls"),
        "allow_partial": (bool, False, None, None, "Persist completed chapters on failure"),
        "language": (str, "english", None, None, "Output language for generated docs"),
    },
    "llm": {
        "max_tokens": (int, 8192, 256, 32768, "Max response tokens"),
        "max_heal_attempts": (int, 3, 1, 10, "Self-healing attempts on context overflow"),
        "cache_max_entries": (int, 512, 0, 100_000, "Response cache capacity"),
        "cache_ttl_seconds": (int, 3600, 0, None, "Response cache entry lifetime"),
    },
    "paths": {
        "output_dir": (str, "docs-output", None, None, "Generated docs directory name"),
        "staging_suffix": (str, ".building", None, None, "Suffix for in-progress projects"),
        "logs_dir": (str, ".repodocs-logs", None, None, "Logs directory name"),
    },
}


# =============================================================================
# Section Dataclasses
# =============================================================================


@dataclass(frozen=True)
class CrawlConfig:
    """Repository crawl configuration."""

    max_file_size_kb: int
    binary_check_bytes: int
    fetch_batch_size: int
    request_timeout: float
    rate_limit_warning_threshold: int


@dataclass(frozen=True)
class BudgetConfig:
    """Content budget configuration."""

    max_lines_per_file: int
    head_ratio: float
    max_context_chars: int
    max_abstractions: int


@dataclass(frozen=True)
class GenerationConfig:
    """Generation pipeline configuration."""

    temperature: float
    chapter_max_tokens: int
    parallel_chapters: int
    allow_partial: bool
    language: str


@dataclass(frozen=True)
class LLMConfig:
    """LLM gateway configuration."""

    max_tokens: int
    max_heal_attempts: int
    cache_max_entries: int
    cache_ttl_seconds: int


@dataclass(frozen=True)
class PathsConfig:
    """Path names configuration."""

    output_dir: str
    staging_suffix: str
    logs_dir: str


_SECTION_TYPES: dict[str, type] = {
    "crawl": CrawlConfig,
    "budget": BudgetConfig,
    "generation": GenerationConfig,
    "llm": LLMConfig,
    "paths": PathsConfig,
}


# =============================================================================
# Config Loader
# =============================================================================


def _load_section(
    parser: ConfigParser, section: str, schema: dict[str, tuple[type, Any, Any, Any, str]]
) -> dict[str, Any]:
    """Load and validate a configuration section.

    Args:
        parser: ConfigParser instance with loaded config
        section: Section name to load
        schema: Schema definition for the section

    Returns:
        Dictionary of validated configuration values

    Raises:
        ConfigError: If validation fails
    """
    result = {}

    for key, (typ, default, min_val, max_val, _) in schema.items():
        if parser.has_option(section, key):
            raw_value = parser.get(section, key)
            value: bool | int | float | str
            try:
                if typ is bool:
                    value = raw_value.lower() in ("true", "1", "yes", "on")
                elif typ is int:
                    value = int(raw_value)
                elif typ is float:
                    value = float(raw_value)
                else:
                    value = raw_value
            except ValueError as e:
                raise ConfigError(
                    f"Invalid value for [{section}].{key}: {raw_value!r} (expected {typ.__name__})"
                ) from e
        else:
            value = default

        # bool is an int subclass, so range checks skip it explicitly
        if typ in (int, float) and value is not None:
            if min_val is not None and value < min_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but minimum is {min_val}"
                )
            if max_val is not None and value > max_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but maximum is {max_val}"
                )

        result[key] = value

    return result


def _section_defaults(section: str) -> Any:
    """Build a section dataclass populated with schema defaults."""
    values = {key: default for key, (_, default, _, _, _) in CONFIG_SCHEMA[section].items()}
    return _SECTION_TYPES[section](**values)


def _load_config(config_path: Optional[Path] = None) -> "Config":
    """Load configuration from an INI file (internal use only).

    Args:
        config_path: Path to config file. If None, uses defaults from schema.

    Returns:
        Config object with all sections populated.

    Raises:
        ConfigError: If validation fails
    """
    parser = ConfigParser()

    if config_path and config_path.exists():
        parser.read(config_path)

    sections = {
        name: _SECTION_TYPES[name](**_load_section(parser, name, schema))
        for name, schema in CONFIG_SCHEMA.items()
    }

    return Config(**sections)


# =============================================================================
# Config Dataclass with Computed Properties
# =============================================================================


@dataclass(frozen=True)
class Config:
    """Complete application configuration."""

    data_dir: Path = None  # type: ignore[assignment]  # Set in __post_init__ if None
    active_provider: str = "ollama"
    active_model: str = "llama3"
    github_token: Optional[str] = None
    ollama_endpoint: str = "http://localhost:11434"

    # Section configs - defaults set in __post_init__
    crawl: CrawlConfig = None  # type: ignore[assignment]
    budget: BudgetConfig = None  # type: ignore[assignment]
    generation: GenerationConfig = None  # type: ignore[assignment]
    llm: LLMConfig = None  # type: ignore[assignment]
    paths: PathsConfig = None  # type: ignore[assignment]

    def __post_init__(self):
        """Initialize section configs with defaults if not provided."""
        # Since frozen=True, we need to use object.__setattr__
        if self.data_dir is None:
            object.__setattr__(self, "data_dir", Path.home() / ".repodocs")
        for section in CONFIG_SCHEMA:
            if getattr(self, section) is None:
                object.__setattr__(self, section, _section_defaults(section))

    @property
    def output_path(self) -> Path:
        """Directory holding one subdirectory per generated project."""
        return self.data_dir / self.paths.output_dir

    @property
    def llm_log_path(self) -> Path:
        """Path to LLM query log file."""
        return self.data_dir / self.paths.logs_dir / "llm-queries.jsonl"

    @property
    def llm_endpoint(self) -> Optional[str]:
        """Endpoint for the active provider (only set for Ollama)."""
        if self.active_provider == "ollama":
            return self.ollama_endpoint
        return None


# =============================================================================
# load_settings
# =============================================================================

# Checked in order; the first key present selects the provider.
_PROVIDER_KEY_ENV_VARS: list[tuple[str, str, str]] = [
    ("OPENAI_API_KEY", "openai", "gpt-4o-mini"),
    ("ANTHROPIC_API_KEY", "anthropic", "claude-3-5-sonnet-20241022"),
    ("GEMINI_API_KEY", "google", "gemini-1.5-flash"),
    ("GOOGLE_API_KEY", "google", "gemini-1.5-flash"),
    ("GROQ_API_KEY", "groq", "llama-3.3-70b-versatile"),
    ("DEEPSEEK_API_KEY", "deepseek", "deepseek-chat"),
    ("OPENROUTER_API_KEY", "openrouter", "openai/gpt-4o-mini"),
    ("XAI_API_KEY", "xai", "grok-2-latest"),
]

_PROVIDER_DEFAULT_MODELS = {provider: model for _, provider, model in _PROVIDER_KEY_ENV_VARS}
_PROVIDER_DEFAULT_MODELS["ollama"] = "llama3"


def _detect_provider_from_keys() -> tuple[str, str]:
    """Auto-detect provider from available API keys.

    Returns:
        Tuple of (provider, model) based on available keys.
        Falls back to ollama if no keys are found.
    """
    for env_var, provider, model in _PROVIDER_KEY_ENV_VARS:
        if os.getenv(env_var):
            return (provider, model)
    return ("ollama", "llama3")


@lru_cache(maxsize=1)
def load_settings() -> Config:
    """Load settings from environment variables and config file.

    Settings are cached for the lifetime of the application.
    Use load_settings.cache_clear() to reload settings.

    Returns:
        Config object populated from environment variables and config file.

    Raises:
        ConfigError: If the config file holds invalid values.
    """
    data_dir_str = os.getenv("REPODOCS_DATA_DIR")
    data_dir = Path(data_dir_str) if data_dir_str else Path.home() / ".repodocs"

    config_file = data_dir / "config.ini"
    try:
        config_exists = config_file.exists()
    except PermissionError:
        config_exists = False
    base_config = _load_config(config_file if config_exists else None)

    active_provider = os.getenv("ACTIVE_PROVIDER")
    active_model = os.getenv("ACTIVE_MODEL")

    if not active_provider:
        detected_provider, detected_model = _detect_provider_from_keys()
        active_provider = detected_provider
        if not active_model:
            active_model = detected_model
    elif not active_model:
        active_model = _PROVIDER_DEFAULT_MODELS.get(active_provider, "llama3")

    return Config(
        data_dir=data_dir,
        active_provider=active_provider,
        active_model=active_model,
        github_token=os.getenv("GITHUB_TOKEN") or None,
        ollama_endpoint=os.getenv("OLLAMA_ENDPOINT", "http://localhost:11434"),
        crawl=base_config.crawl,
        budget=base_config.budget,
        generation=base_config.generation,
        llm=base_config.llm,
        paths=base_config.paths,
    )
