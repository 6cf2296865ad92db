"""FastAPI dependency injection functions."""

from functools import lru_cache

from fastapi import Depends

from repodocs.config import Config, load_settings
from repodocs.generation.orchestrator import CrawlFunction, GenerationOrchestrator
from repodocs.llm.cache import ResponseCache
from repodocs.llm.client import LLMGateway
from repodocs.output.store import OutputStore
from repodocs.repo.crawler import crawl_repository


@lru_cache
def get_settings() -> Config:
    """Get cached application settings."""
    return load_settings()


_cache_instance: ResponseCache | None = None
_gateway_instance: LLMGateway | None = None


def get_cache() -> ResponseCache:
    """Get the process-wide LLM response cache."""
    global _cache_instance
    if _cache_instance is None:
        settings = get_settings()
        _cache_instance = ResponseCache(
            max_entries=settings.llm.cache_max_entries,
            ttl_seconds=settings.llm.cache_ttl_seconds,
        )
    return _cache_instance


def get_gateway() -> LLMGateway:
    """Get the shared LLM gateway.

    Every generation run goes through this instance, so concurrent runs
    share its cache and usage counters.
    """
    global _gateway_instance
    if _gateway_instance is None:
        settings = get_settings()
        _gateway_instance = LLMGateway(
            cache=get_cache(),
            log_path=settings.llm_log_path,
            max_heal_attempts=settings.llm.max_heal_attempts,
            local_endpoint=settings.ollama_endpoint,
        )
    return _gateway_instance


def _reset_llm_instances() -> None:
    """Reset cache and gateway instances (for testing only)."""
    global _cache_instance, _gateway_instance
    _cache_instance = None
    _gateway_instance = None


def get_store() -> OutputStore:
    """Get the output store for the configured data directory."""
    settings = get_settings()
    return OutputStore(root=settings.output_path, staging_suffix=settings.paths.staging_suffix)


def get_crawl_function() -> CrawlFunction:
    """Get the function used to crawl repositories."""
    return crawl_repository


def get_orchestrator(
    gateway: LLMGateway = Depends(get_gateway),
    store: OutputStore = Depends(get_store),
    crawl: CrawlFunction = Depends(get_crawl_function),
) -> GenerationOrchestrator:
    """Build an orchestrator for one generation request."""
    return GenerationOrchestrator(gateway=gateway, store=store, crawl=crawl)