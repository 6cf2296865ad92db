"""Token and cost estimation.

Estimates are advisory: they are reported to the caller and drive the
self-healing reduction targets, but never block a call on their own.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Optional

from repodocs.constants.generation import MAX_ABSTRACTIONS
from repodocs.constants.llm import (
    ABSTRACTION_OUTPUT_TOKENS,
    CHAPTER_OUTPUT_TOKENS,
    CHARS_PER_TOKEN,
    COST_RANGE_FACTOR,
    COST_TOKENS_PER_CHAR,
    MIN_OUTPUT_RESERVE_TOKENS,
    ORDERING_OUTPUT_TOKENS,
    OUTPUT_RESERVE_RATIO,
    PROMPT_OVERHEAD_FACTOR,
    REDUCTION_SAFETY_MARGIN,
    RELATIONSHIP_OUTPUT_TOKENS,
    TOKEN_CRITICAL_PERCENT,
    TOKEN_DANGER_PERCENT,
    TOKEN_WARNING_PERCENT,
)
from repodocs.llm.providers import get_context_window, get_model, get_provider, list_providers


def estimate_tokens(text: str) -> int:
    """Approximate token count as ``ceil(len / 3.5)``, erring high for code."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


# =============================================================================
# Context Window Usage
# =============================================================================


@dataclass(frozen=True)
class TokenEstimate:
    """How much of a model's input budget a prompt uses."""

    tokens: int
    context_window: int
    output_reserve: int
    available: int
    usage_percent: float
    level: str

    @property
    def is_over_limit(self) -> bool:
        return self.tokens > self.available

    def to_dict(self) -> dict:
        return {
            "estimatedTokens": self.tokens,
            "contextWindow": self.context_window,
            "outputReserve": self.output_reserve,
            "availableTokens": self.available,
            "percentUsed": round(self.usage_percent, 1),
            "isOverLimit": self.is_over_limit,
            "warningLevel": self.level,
        }


def usage_level(percent: float) -> str:
    if percent > TOKEN_CRITICAL_PERCENT:
        return "critical"
    if percent > TOKEN_DANGER_PERCENT:
        return "danger"
    if percent > TOKEN_WARNING_PERCENT:
        return "warning"
    return "safe"


def estimate_tokens_with_warning(text: str, context_window: int) -> TokenEstimate:
    """Estimate prompt tokens against a context window.

    The output reserve is ``max(4096, 15% of the window)``; what is left is
    the input budget the usage percentage refers to.
    """
    tokens = estimate_tokens(text)
    reserve = max(MIN_OUTPUT_RESERVE_TOKENS, int(context_window * OUTPUT_RESERVE_RATIO))
    available = max(context_window - reserve, 1)
    percent = tokens / available * 100
    return TokenEstimate(
        tokens=tokens,
        context_window=context_window,
        output_reserve=reserve,
        available=available,
        usage_percent=percent,
        level=usage_level(percent),
    )


def estimate_for_model(text: str, provider_id: str, model_id: str) -> TokenEstimate:
    return estimate_tokens_with_warning(text, get_context_window(provider_id, model_id))


def suggest_larger_models(required_tokens: int, exclude_model: Optional[str] = None) -> list[dict]:
    """Models from the provider table whose window fits ``required_tokens``.

    Sorted by context window, smallest first.
    """
    suggestions = [
        {
            "providerId": provider.id,
            "modelId": model.id,
            "name": model.name,
            "contextWindow": model.context_window,
        }
        for provider in list_providers()
        for model in provider.models
        if model.context_window >= required_tokens and model.id != exclude_model
    ]
    return sorted(suggestions, key=lambda s: s["contextWindow"])


# =============================================================================
# Overflow Errors
# =============================================================================

LIMIT_AND_ACTUAL_PATTERNS = [
    re.compile(r"limit of (\d+) tokens.*?resulted in (\d+) tokens", re.IGNORECASE | re.DOTALL),
    re.compile(r"maximum context length is (\d+) tokens.*?(\d+) tokens", re.IGNORECASE | re.DOTALL),
]
LIMIT_ONLY_PATTERN = re.compile(r"maximum context length is (\d+)", re.IGNORECASE)
OVERFLOW_MARKER_PATTERN = re.compile(
    r"context_length_exceeded|context window|request too large|payload too large"
    r"|prompt is too long|token.{0,40}limit.{0,40}exceeded",
    re.IGNORECASE,
)


def parse_token_limit_error(message: str) -> tuple[Optional[int], Optional[int]]:
    """Pull ``(limit, actual)`` token counts out of a provider error message.

    Either value is None when the message does not state it.
    """
    for pattern in LIMIT_AND_ACTUAL_PATTERNS:
        match = pattern.search(message)
        if match:
            return int(match.group(1)), int(match.group(2))
    match = LIMIT_ONLY_PATTERN.search(message)
    if match:
        return int(match.group(1)), None
    return None, None


def is_context_overflow_message(message: str) -> bool:
    """Whether a provider error message describes a context-length overflow."""
    if not message:
        return False
    limit, _ = parse_token_limit_error(message)
    return limit is not None or bool(OVERFLOW_MARKER_PATTERN.search(message))


@dataclass(frozen=True)
class ContentReduction:
    target_tokens: int
    reduction_percent: float


def calculate_content_reduction(
    current_tokens: int, limit_tokens: int, safety_margin: float = REDUCTION_SAFETY_MARGIN
) -> ContentReduction:
    """Target size for a prompt that overflowed ``limit_tokens``."""
    target = math.floor(limit_tokens * safety_margin)
    percent = (current_tokens - target) / current_tokens * 100 if current_tokens else 0.0
    return ContentReduction(target_tokens=target, reduction_percent=max(percent, 0.0))


# =============================================================================
# Cost
# =============================================================================


@dataclass(frozen=True)
class CostEstimate:
    """Up-front cost estimate for a whole generation run."""

    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    breakdown: dict[str, int]
    cost_low: float
    cost_estimated: float
    cost_high: float
    is_free: bool

    @property
    def formatted(self) -> str:
        return format_cost(self.cost_low, self.cost_high, self.is_free)

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "model": self.model,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "breakdown": self.breakdown,
            "costLow": self.cost_low,
            "costEstimated": self.cost_estimated,
            "costHigh": self.cost_high,
            "isFree": self.is_free,
            "formattedCost": self.formatted,
        }


def estimate_generation_cost(
    total_chars: int,
    provider_id: str,
    model_id: str,
    chapters: int = MAX_ABSTRACTIONS,
) -> CostEstimate:
    """Estimate tokens and dollar cost of a full run over ``total_chars`` of source.

    Args:
        total_chars: Combined length of the crawled file contents.
        provider_id: Provider from the capability table.
        model_id: Model of that provider.
        chapters: Expected chapter count.

    Raises:
        KeyError: If the provider or model is unknown.
    """
    provider = get_provider(provider_id)
    model = get_model(provider_id, model_id)
    if provider is None or model is None:
        raise KeyError(f"Unknown provider/model: {provider_id}/{model_id}")

    content_tokens = math.ceil(total_chars * COST_TOKENS_PER_CHAR)
    abstraction_in = math.ceil(content_tokens * PROMPT_OVERHEAD_FACTOR)
    # Relationship prompts carry abstraction summaries, chapters carry a subset of files
    relationship_in = math.ceil(content_tokens * 0.3 * PROMPT_OVERHEAD_FACTOR)
    ordering_in = math.ceil(2000 * PROMPT_OVERHEAD_FACTOR)
    chapter_in = math.ceil(content_tokens * 0.5 * PROMPT_OVERHEAD_FACTOR) * chapters
    chapter_out = CHAPTER_OUTPUT_TOKENS * chapters

    input_tokens = abstraction_in + relationship_in + ordering_in + chapter_in
    output_tokens = (
        ABSTRACTION_OUTPUT_TOKENS + RELATIONSHIP_OUTPUT_TOKENS + ORDERING_OUTPUT_TOKENS + chapter_out
    )
    base = (input_tokens / 1000) * model.cost_per_1k_input + (
        output_tokens / 1000
    ) * model.cost_per_1k_output

    return CostEstimate(
        provider=provider.name,
        model=model.name,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        breakdown={
            "fileContent": content_tokens,
            "abstractions": abstraction_in + ABSTRACTION_OUTPUT_TOKENS,
            "relationships": relationship_in + RELATIONSHIP_OUTPUT_TOKENS,
            "ordering": ordering_in + ORDERING_OUTPUT_TOKENS,
            "chapters": chapter_in + chapter_out,
        },
        cost_low=base * (1 - COST_RANGE_FACTOR),
        cost_estimated=base,
        cost_high=base * (1 + COST_RANGE_FACTOR),
        is_free=provider.is_local
        or (model.cost_per_1k_input == 0 and model.cost_per_1k_output == 0),
    )


def _format_dollars(amount: float) -> str:
    if amount < 0.01:
        return f"${amount:.4f}"
    if amount < 1:
        return f"${amount:.3f}"
    return f"${amount:.2f}"


def format_cost(low: float, high: float, is_free: bool = False) -> str:
    """Render a cost range, or ``FREE (local)`` for free models."""
    if is_free or high == 0:
        return "FREE (local)"
    return f"{_format_dollars(low)} - {_format_dollars(high)}"
