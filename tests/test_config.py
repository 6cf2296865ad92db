"""Configuration loading tests."""

import pytest

from repodocs.config import CONFIG_SCHEMA, Config, ConfigError, load_settings


def write_config(data_dir, text):
    (data_dir / "config.ini").write_text(text)
    load_settings.cache_clear()


class TestDefaults:
    """Tests for schema defaults."""

    def test_defaults_match_schema(self, data_dir):
        """Without a config file every section carries its schema defaults."""
        settings = load_settings()

        for section, keys in CONFIG_SCHEMA.items():
            section_config = getattr(settings, section)
            for key, (_, default, _, _, _) in keys.items():
                assert getattr(section_config, key) == default, f"{section}.{key}"

    def test_documented_defaults(self, data_dir):
        """Key defaults used throughout the pipeline."""
        settings = load_settings()

        assert settings.crawl.max_file_size_kb == 500
        assert settings.crawl.fetch_batch_size == 10
        assert settings.budget.max_lines_per_file == 150
        assert settings.generation.allow_partial is False
        assert settings.paths.staging_suffix == ".building"

    def test_derived_paths(self, data_dir):
        """Output and log paths hang off the data directory."""
        settings = load_settings()

        assert settings.data_dir == data_dir
        assert settings.output_path == data_dir / "docs-output"
        assert settings.llm_log_path == data_dir / ".repodocs-logs" / "llm-queries.jsonl"

    def test_config_without_arguments(self):
        """A bare Config is fully populated."""
        config = Config()

        assert config.budget.max_abstractions == 8
        assert config.active_provider == "ollama"


class TestConfigFile:
    """Tests for config.ini overrides."""

    def test_values_are_overridden(self, data_dir):
        """Values in config.ini replace defaults and are type-converted."""
        write_config(
            data_dir,
            "[budget]\nmax_lines_per_file = 300\nhead_ratio = 0.5\n"
            "[generation]\nallow_partial = yes\nlanguage = french\n",
        )

        settings = load_settings()

        assert settings.budget.max_lines_per_file == 300
        assert settings.budget.head_ratio == 0.5
        assert settings.generation.allow_partial is True
        assert settings.generation.language == "french"
        assert settings.budget.max_abstractions == 8

    def test_out_of_range_value(self, data_dir):
        """Values outside the schema bounds raise ConfigError."""
        write_config(data_dir, "[generation]\nparallel_chapters = 99\n")

        with pytest.raises(ConfigError, match="maximum is 16"):
            load_settings()

    def test_below_minimum(self, data_dir):
        """Values under the minimum raise ConfigError."""
        write_config(data_dir, "[crawl]\nmax_file_size_kb = 0\n")

        with pytest.raises(ConfigError, match="minimum is 1"):
            load_settings()

    def test_wrong_type(self, data_dir):
        """Non-numeric values for numeric keys raise ConfigError."""
        write_config(data_dir, "[llm]\nmax_tokens = lots\n")

        with pytest.raises(ConfigError, match="expected int"):
            load_settings()


class TestProviderDetection:
    """Tests for provider selection from the environment."""

    def test_falls_back_to_ollama(self):
        """With no keys the local provider is used."""
        settings = load_settings()

        assert (settings.active_provider, settings.active_model) == ("ollama", "llama3")
        assert settings.llm_endpoint == "http://localhost:11434"

    def test_detects_provider_from_key(self, monkeypatch):
        """The first provider key found selects the provider and its default model."""
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")

        settings = load_settings()

        assert settings.active_provider == "anthropic"
        assert settings.active_model.startswith("claude")
        assert settings.llm_endpoint is None

    def test_explicit_provider_wins(self, monkeypatch):
        """ACTIVE_PROVIDER and ACTIVE_MODEL override detection."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("ACTIVE_PROVIDER", "groq")
        monkeypatch.setenv("ACTIVE_MODEL", "llama-3.1-8b-instant")

        settings = load_settings()

        assert settings.active_provider == "groq"
        assert settings.active_model == "llama-3.1-8b-instant"

    def test_explicit_provider_default_model(self, monkeypatch):
        """An explicit provider without a model gets that provider's default."""
        monkeypatch.setenv("ACTIVE_PROVIDER", "openai")

        assert load_settings().active_model == "gpt-4o-mini"

    def test_github_token(self, monkeypatch):
        """GITHUB_TOKEN is picked up; an empty value counts as unset."""
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_abc")
        assert load_settings().github_token == "ghp_abc"

        monkeypatch.setenv("GITHUB_TOKEN", "")
        load_settings.cache_clear()
        assert load_settings().github_token is None
