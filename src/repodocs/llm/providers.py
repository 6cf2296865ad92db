"""LLM provider capability table.

Providers are plain data: adding one means adding an entry to ``PROVIDERS``,
not writing a new client class. The gateway turns an entry into a LiteLLM
model string and call arguments.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class ModelInfo:
    """A model offered by a provider, with published per-1K-token prices."""

    id: str
    name: str
    context_window: int
    cost_per_1k_input: float = 0.0
    cost_per_1k_output: float = 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contextWindow": self.context_window,
            "costPer1kInput": self.cost_per_1k_input,
            "costPer1kOutput": self.cost_per_1k_output,
        }


@dataclass(frozen=True)
class ProviderInfo:
    """Capabilities of one LLM provider."""

    id: str
    name: str
    models: tuple[ModelInfo, ...]
    requires_api_key: bool = True
    env_var_names: tuple[str, ...] = field(default_factory=tuple)
    base_url: Optional[str] = None
    is_local: bool = False
    litellm_prefix: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "models": [model.to_dict() for model in self.models],
            "requiresApiKey": self.requires_api_key,
            "envVarNames": list(self.env_var_names),
            "baseUrl": self.base_url,
            "isLocal": self.is_local,
        }


# Context window used when a model is not listed
DEFAULT_CONTEXT_WINDOW = 8192

PROVIDERS: dict[str, ProviderInfo] = {
    provider.id: provider
    for provider in (
        ProviderInfo(
            id="openai",
            name="OpenAI",
            models=(
                ModelInfo("gpt-4o", "GPT-4o", 128_000, 0.0025, 0.01),
                ModelInfo("gpt-4o-mini", "GPT-4o Mini", 128_000, 0.00015, 0.0006),
                ModelInfo("gpt-4.1", "GPT-4.1", 1_047_576, 0.002, 0.008),
                ModelInfo("gpt-4.1-mini", "GPT-4.1 Mini", 1_047_576, 0.0004, 0.0016),
                ModelInfo("o3-mini", "o3-mini", 200_000, 0.0011, 0.0044),
            ),
            env_var_names=("OPENAI_API_KEY",),
        ),
        ProviderInfo(
            id="anthropic",
            name="Anthropic",
            models=(
                ModelInfo(
                    "claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", 200_000, 0.003, 0.015
                ),
                ModelInfo("claude-3-5-haiku-20241022", "Claude 3.5 Haiku", 200_000, 0.0008, 0.004),
            ),
            env_var_names=("ANTHROPIC_API_KEY",),
            litellm_prefix="anthropic",
        ),
        ProviderInfo(
            id="google",
            name="Google Gemini",
            models=(
                ModelInfo("gemini-1.5-flash", "Gemini 1.5 Flash", 1_048_576, 0.000075, 0.0003),
                ModelInfo("gemini-1.5-pro", "Gemini 1.5 Pro", 2_097_152, 0.00125, 0.005),
                ModelInfo("gemini-2.0-flash", "Gemini 2.0 Flash", 1_048_576, 0.0001, 0.0004),
            ),
            env_var_names=("GEMINI_API_KEY", "GOOGLE_API_KEY"),
            litellm_prefix="gemini",
        ),
        ProviderInfo(
            id="groq",
            name="Groq",
            models=(
                ModelInfo(
                    "llama-3.3-70b-versatile", "Llama 3.3 70B", 128_000, 0.00059, 0.00079
                ),
                ModelInfo("llama-3.1-8b-instant", "Llama 3.1 8B", 128_000, 0.00005, 0.00008),
            ),
            env_var_names=("GROQ_API_KEY",),
            base_url="https://api.groq.com/openai/v1",
            litellm_prefix="groq",
        ),
        ProviderInfo(
            id="deepseek",
            name="DeepSeek",
            models=(
                ModelInfo("deepseek-chat", "DeepSeek V3", 64_000, 0.00027, 0.0011),
                ModelInfo("deepseek-reasoner", "DeepSeek R1", 64_000, 0.00055, 0.00219),
            ),
            env_var_names=("DEEPSEEK_API_KEY",),
            base_url="https://api.deepseek.com",
            litellm_prefix="deepseek",
        ),
        ProviderInfo(
            id="openrouter",
            name="OpenRouter",
            models=(
                ModelInfo(
                    "openai/gpt-4o-mini", "GPT-4o Mini (OpenRouter)", 128_000, 0.00015, 0.0006
                ),
                ModelInfo(
                    "anthropic/claude-3.5-sonnet",
                    "Claude 3.5 Sonnet (OpenRouter)",
                    200_000,
                    0.003,
                    0.015,
                ),
            ),
            env_var_names=("OPENROUTER_API_KEY",),
            base_url="https://openrouter.ai/api/v1",
            litellm_prefix="openrouter",
        ),
        ProviderInfo(
            id="xai",
            name="xAI",
            models=(ModelInfo("grok-2-latest", "Grok 2", 131_072, 0.002, 0.01),),
            env_var_names=("XAI_API_KEY",),
            base_url="https://api.x.ai/v1",
            litellm_prefix="xai",
        ),
        ProviderInfo(
            id="azure",
            name="Azure OpenAI",
            models=(
                ModelInfo("gpt-4o", "GPT-4o (Azure)", 128_000, 0.0025, 0.01),
                ModelInfo("gpt-4o-mini", "GPT-4o Mini (Azure)", 128_000, 0.00015, 0.0006),
            ),
            env_var_names=("AZURE_API_KEY", "AZURE_OPENAI_API_KEY"),
            litellm_prefix="azure",
        ),
        ProviderInfo(
            id="ollama",
            name="Ollama (local)",
            models=(
                ModelInfo("llama3", "Llama 3", 8192),
                ModelInfo("llama3.1", "Llama 3.1", 128_000),
                ModelInfo("qwen2.5-coder", "Qwen 2.5 Coder", 32_768),
            ),
            requires_api_key=False,
            base_url="http://localhost:11434",
            is_local=True,
            litellm_prefix="ollama",
        ),
    )
}


def list_providers() -> list[ProviderInfo]:
    """All known providers, in table order."""
    return list(PROVIDERS.values())


def get_provider(provider_id: str) -> Optional[ProviderInfo]:
    return PROVIDERS.get(provider_id)


def get_model(provider_id: str, model_id: str) -> Optional[ModelInfo]:
    provider = PROVIDERS.get(provider_id)
    if provider is None:
        return None
    for model in provider.models:
        if model.id == model_id:
            return model
    return None


def get_context_window(provider_id: str, model_id: str) -> int:
    """Context window of a model, or a conservative default if unknown."""
    model = get_model(provider_id, model_id)
    return model.context_window if model else DEFAULT_CONTEXT_WINDOW


def get_model_string(provider_id: str, model_id: str) -> str:
    """Build the LiteLLM model string for a provider/model pair.

    OpenAI is LiteLLM's default and takes the bare model name. Unknown
    providers are passed through as ``provider/model``.
    """
    if provider_id == "openai":
        return model_id
    provider = PROVIDERS.get(provider_id)
    prefix = provider.litellm_prefix if provider and provider.litellm_prefix else provider_id
    return f"{prefix}/{model_id}"


def resolve_api_key(provider_id: str, custom_key: Optional[str] = None) -> Optional[str]:
    """Pick the API key for a call.

    A non-blank custom key wins; local providers need none; otherwise the
    provider's environment variables are checked in order.
    """
    if custom_key and custom_key.strip():
        return custom_key.strip()
    provider = PROVIDERS.get(provider_id)
    if provider is None or provider.is_local:
        return None
    for env_var in provider.env_var_names:
        value = os.getenv(env_var)
        if value:
            return value
    return None


def calculate_cost(
    provider_id: str, model_id: str, input_tokens: int, output_tokens: int
) -> float:
    """Dollar cost of a call from the pricing table (0.0 for unknown models)."""
    model = get_model(provider_id, model_id)
    if model is None:
        return 0.0
    return (input_tokens / 1000) * model.cost_per_1k_input + (
        output_tokens / 1000
    ) * model.cost_per_1k_output
