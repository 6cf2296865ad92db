"""LLM gateway, provider table, cache and estimators."""

from repodocs.llm.cache import CacheStats, ResponseCache
from repodocs.llm.client import (
    ContentReduction,
    LLMGateway,
    LLMRequest,
    LLMResponse,
    SelfHealingResult,
    truncate_prompt,
)
from repodocs.llm.providers import PROVIDERS, ModelInfo, ProviderInfo, get_model, get_provider

__all__ = [
    "CacheStats",
    "ContentReduction",
    "LLMGateway",
    "LLMRequest",
    "LLMResponse",
    "ModelInfo",
    "PROVIDERS",
    "ProviderInfo",
    "ResponseCache",
    "SelfHealingResult",
    "get_model",
    "get_provider",
    "truncate_prompt",
]
