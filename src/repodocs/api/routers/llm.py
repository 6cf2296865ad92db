"""LLM provider, cache and estimation endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from repodocs.api.deps import get_cache, get_gateway
from repodocs.api.schemas import (
    CostEstimateRequest,
    ProviderTestRequest,
    ProviderTestResponse,
    TokenEstimateRequest,
)
from repodocs.constants.generation import MAX_ABSTRACTIONS
from repodocs.llm.cache import ResponseCache
from repodocs.llm.client import LLMGateway
from repodocs.llm.estimators import (
    estimate_for_model,
    estimate_generation_cost,
    suggest_larger_models,
)
from repodocs.llm.providers import get_model, list_providers

router = APIRouter(prefix="/api/llm", tags=["llm"])


@router.get("/providers")
async def get_providers() -> list[dict]:
    """List supported providers and their models."""
    return [provider.to_dict() for provider in list_providers()]


@router.post("/providers/test", response_model=ProviderTestResponse)
async def test_provider(
    body: ProviderTestRequest,
    gateway: LLMGateway = Depends(get_gateway),
) -> ProviderTestResponse:
    """Check that a provider accepts the given credentials and model."""
    result = await gateway.check_connection(
        provider=body.provider,
        model=body.model,
        api_key=body.api_key,
        base_url=body.base_url,
    )
    return ProviderTestResponse.model_validate(result)


@router.get("/cache")
async def get_cache_stats(
    cache: ResponseCache = Depends(get_cache),
    gateway: LLMGateway = Depends(get_gateway),
) -> dict:
    """Cache hit/miss counters and process-wide usage totals."""
    return {"cache": cache.stats().to_dict(), "usage": gateway.usage.to_dict()}


@router.delete("/cache")
async def clear_cache(cache: ResponseCache = Depends(get_cache)) -> dict:
    """Drop every cached response."""
    cache.clear()
    return {"success": True}


@router.post("/estimate")
async def estimate_cost(body: CostEstimateRequest) -> dict:
    """Estimate tokens and cost of generating docs for ``totalChars`` of source."""
    try:
        estimate = estimate_generation_cost(
            total_chars=body.total_chars,
            provider_id=body.llm_provider,
            model_id=body.llm_model,
            chapters=body.chapters or MAX_ABSTRACTIONS,
        )
    except KeyError:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown model: {body.llm_provider}/{body.llm_model}",
        )
    return estimate.to_dict()


@router.post("/estimate/tokens")
async def estimate_tokens(body: TokenEstimateRequest) -> dict:
    """Measure text against the model's context window.

    When the text does not fit, models with a larger window are suggested.
    """
    if get_model(body.llm_provider, body.llm_model) is None:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown model: {body.llm_provider}/{body.llm_model}",
        )
    estimate = estimate_for_model(body.text, body.llm_provider, body.llm_model)
    result = estimate.to_dict()
    if estimate.is_over_limit:
        result["suggestions"] = suggest_larger_models(estimate.tokens, body.llm_model)
    return result
