"""LiteLLM-based LLM gateway with response caching and self-healing retries."""

import json
import logging
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from litellm import acompletion
from litellm.exceptions import (
    APIConnectionError,
    APIError,
    AuthenticationError,
    BadRequestError,
    ContextWindowExceededError,
    InternalServerError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
    UnprocessableEntityError,
)

from repodocs.config import ConfigError, load_settings
from repodocs.constants.llm import (
    CHARS_PER_TOKEN,
    DEFAULT_TEMPERATURE,
    FALLBACK_REDUCTION_RATIO,
    MAX_HEAL_ATTEMPTS,
    MAX_TOKENS,
    MIN_REDUCTION_PROGRESS,
    TRUNCATION_NOTICE,
)
from repodocs.errors import ContextOverflowError, GatewayError, RepoDocsError
from repodocs.llm.cache import ResponseCache
from repodocs.llm.estimators import (
    calculate_content_reduction,
    estimate_tokens,
    is_context_overflow_message,
    parse_token_limit_error,
)
from repodocs.llm.providers import (
    calculate_cost,
    get_provider,
    get_model_string,
    resolve_api_key,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LLMRequest:
    """One model call."""

    prompt: str
    provider: str
    model: str
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = MAX_TOKENS
    use_cache: bool = True
    custom_api_key: Optional[str] = None
    custom_base_url: Optional[str] = None
    system_prompt: Optional[str] = None


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class LLMResponse:
    content: str
    usage: Optional[TokenUsage] = None
    cost: Optional[float] = None
    cached: bool = False


@dataclass(frozen=True)
class ContentReduction:
    """Reported to the caller each time self-healing shrinks a prompt."""

    attempt: int
    original_tokens: int
    reduced_tokens: int
    reduction_percent: float


@dataclass
class SelfHealingResult:
    """Outcome of :meth:`LLMGateway.call_with_self_healing`.

    ``error`` is set instead of raising when every attempt failed.
    """

    content: str
    attempts: int
    was_reduced: bool
    original_tokens: int
    final_tokens: int
    token_history: list[int] = field(default_factory=list)
    error: Optional[RepoDocsError] = None
    response: Optional[LLMResponse] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class UsageTotals:
    """Process-wide call and cost counters."""

    calls: int = 0
    cached_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0

    def to_dict(self) -> dict:
        return {
            "calls": self.calls,
            "cachedCalls": self.cached_calls,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "cost": round(self.cost, 6),
        }


# (prompt, target_tokens) -> smaller prompt
PromptReducer = Callable[[str, int], str]
ReductionCallback = Callable[[ContentReduction], Awaitable[None]]


def truncate_prompt(prompt: str, target_tokens: int) -> str:
    """Cut a prompt to roughly ``target_tokens``, preferring a line boundary.

    Used when the caller has no smarter way to rebuild the prompt.
    """
    target_chars = max(int(target_tokens * CHARS_PER_TOKEN * 0.9), 0)
    if len(prompt) <= target_chars:
        return prompt
    truncated = prompt[:target_chars]
    last_newline = truncated.rfind("\n")
    if last_newline > target_chars * 0.8:
        truncated = truncated[:last_newline]
    return truncated + TRUNCATION_NOTICE


class LLMGateway:
    """Provider-agnostic LLM access with caching, cost accounting and query logging."""

    def __init__(
        self,
        cache: Optional[ResponseCache] = None,
        log_path: Optional[Path] = None,
        max_heal_attempts: Optional[int] = None,
        local_endpoint: Optional[str] = None,
    ):
        """Initialize the gateway.

        Args:
            cache: Response cache. A private one is created if omitted.
            log_path: Optional path to JSONL log file for query logging.
            max_heal_attempts: Default attempt cap for self-healing calls.
            local_endpoint: Base URL for local providers (Ollama).
        """
        if max_heal_attempts is None:
            try:
                settings = load_settings()
                max_heal_attempts = settings.llm.max_heal_attempts
            except (ValueError, OSError, ConfigError):
                max_heal_attempts = MAX_HEAL_ATTEMPTS
        self.cache = cache if cache is not None else ResponseCache()
        self.log_path = log_path
        self.max_heal_attempts = max_heal_attempts
        self.local_endpoint = local_endpoint
        self.usage = UsageTotals()

    def _log_query(
        self,
        request: LLMRequest,
        response: Optional[str],
        duration_ms: int,
        cached: bool = False,
        error: Optional[str] = None,
        error_details: Optional[dict] = None,
    ) -> None:
        """Append one call to the JSONL query log.

        Logging failures never break the call.
        """
        if not self.log_path:
            return

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "provider": request.provider,
            "model": request.model,
            "request": {
                "system_prompt": request.system_prompt,
                "prompt": request.prompt,
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
            },
            "response": response,
            "duration_ms": duration_ms,
            "cached": cached,
            "error": error,
        }
        if error_details:
            entry["error_details"] = error_details

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str) + "\n")
        except OSError as e:
            logger.debug(f"Could not write LLM query log: {e}")

    def _extract_error_details(self, e: Exception) -> Optional[dict]:
        """Pull status code, provider and rate-limit headers off a LiteLLM exception."""
        details: dict = {}

        if getattr(e, "status_code", None) is not None:
            details["status_code"] = e.status_code  # type: ignore[attr-defined]

        resp = getattr(e, "response", None)
        if resp is not None:
            if hasattr(resp, "status_code"):
                details["status_code"] = resp.status_code
            headers = getattr(resp, "headers", None)
            if headers:
                relevant = {
                    k: v
                    for k, v in dict(headers).items()
                    if k.lower().startswith("x-ratelimit-")
                    or k.lower() in ("retry-after", "x-request-id")
                }
                if relevant:
                    details["response_headers"] = relevant

        if getattr(e, "llm_provider", None):
            details["llm_provider"] = e.llm_provider  # type: ignore[attr-defined]

        if hasattr(e, "message"):
            details["message"] = str(e.message)  # type: ignore[attr-defined]

        return details or None

    def _map_exception(self, e: Exception, request: LLMRequest) -> RepoDocsError:
        """Translate a LiteLLM exception into the repodocs error taxonomy."""
        message = str(e)
        detail = {"provider": request.provider, "model": request.model}
        if isinstance(e, ContextWindowExceededError) or (
            isinstance(e, (BadRequestError, APIError)) and is_context_overflow_message(message)
        ):
            limit, actual = parse_token_limit_error(message)
            return ContextOverflowError(f"Context window exceeded: {message}", limit, actual)
        if isinstance(e, AuthenticationError):
            return GatewayError(f"Authentication failed: {message}", detail)
        if isinstance(e, RateLimitError):
            return GatewayError(f"Rate limit exceeded: {message}", detail)
        if isinstance(e, NotFoundError):
            return GatewayError(
                f"Model {request.model!r} is not available from {request.provider}; "
                f"pick a different model: {message}",
                detail,
            )
        if isinstance(e, PermissionDeniedError):
            return GatewayError(f"Permission denied: {message}", detail)
        if isinstance(e, Timeout):
            return GatewayError(f"Request timed out: {message}", detail)
        if isinstance(e, (ServiceUnavailableError, InternalServerError)):
            return GatewayError(f"Provider unavailable: {message}", detail)
        if isinstance(e, APIConnectionError):
            return GatewayError(f"Connection failed: {message}", detail)
        return GatewayError(f"LLM API error: {message}", detail)

    def _build_kwargs(self, request: LLMRequest) -> dict:
        provider = get_provider(request.provider)
        if provider is None:
            raise GatewayError(f"Unknown provider: {request.provider}", {"provider": request.provider})

        api_key = resolve_api_key(request.provider, request.custom_api_key)
        if provider.requires_api_key and not api_key:
            hint = provider.env_var_names[0] if provider.env_var_names else "an API key"
            raise GatewayError(
                f"No API key configured for {provider.name}. Pass an API key or set {hint}.",
                {"provider": request.provider},
            )

        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        kwargs = {
            "model": get_model_string(request.provider, request.model),
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if api_key:
            kwargs["api_key"] = api_key
        if request.custom_base_url:
            kwargs["api_base"] = request.custom_base_url
        elif provider.is_local:
            kwargs["api_base"] = self.local_endpoint or provider.base_url
        return kwargs

    async def call(self, request: LLMRequest) -> LLMResponse:
        """Send one request, answering from the cache when possible.

        Raises:
            ContextOverflowError: If the prompt does not fit the model's window.
            GatewayError: On unknown providers, missing keys, provider or
                network failures, and empty responses.
        """
        cache_key = ResponseCache.make_key(
            request.prompt, request.provider, request.model, request.temperature
        )
        if request.use_cache:
            hit = self.cache.get(cache_key)
            if hit is not None:
                self.usage.calls += 1
                self.usage.cached_calls += 1
                self._log_query(request, response=hit, duration_ms=0, cached=True)
                return LLMResponse(content=hit, cost=0.0, cached=True)

        kwargs = self._build_kwargs(request)

        start_time = time.perf_counter()
        try:
            response = await acompletion(**kwargs)
        except (
            ContextWindowExceededError,
            BadRequestError,
            AuthenticationError,
            RateLimitError,
            APIConnectionError,
            APIError,
            NotFoundError,
            PermissionDeniedError,
            Timeout,
            ServiceUnavailableError,
            InternalServerError,
            UnprocessableEntityError,
        ) as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            self._log_query(
                request,
                response=None,
                duration_ms=duration_ms,
                error=str(e),
                error_details=self._extract_error_details(e),
            )
            raise self._map_exception(e, request) from e

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        content = str(response.choices[0].message.content or "")
        if not content.strip():
            self._log_query(request, response=None, duration_ms=duration_ms, error="empty response")
            raise GatewayError(
                f"{request.provider} returned an empty response for model {request.model!r}",
                {"provider": request.provider, "model": request.model},
            )

        usage = None
        raw_usage = getattr(response, "usage", None)
        if raw_usage is not None:
            usage = TokenUsage(
                input_tokens=getattr(raw_usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(raw_usage, "completion_tokens", 0) or 0,
            )
        cost = (
            calculate_cost(request.provider, request.model, usage.input_tokens, usage.output_tokens)
            if usage
            else None
        )

        self.usage.calls += 1
        if usage:
            self.usage.input_tokens += usage.input_tokens
            self.usage.output_tokens += usage.output_tokens
        self.usage.cost += cost or 0.0

        if request.use_cache:
            self.cache.set(cache_key, content)
        self._log_query(request, response=content, duration_ms=duration_ms)
        return LLMResponse(content=content, usage=usage, cost=cost, cached=False)

    async def call_with_self_healing(
        self,
        request: LLMRequest,
        reducer: Optional[PromptReducer] = None,
        max_attempts: Optional[int] = None,
        on_content_reduced: Optional[ReductionCallback] = None,
    ) -> SelfHealingResult:
        """Call the model, shrinking the prompt and retrying on context overflow.

        Each overflow sets a target of 85% of the reported limit (or of 70%
        of the current estimate when the provider does not report one) and
        asks ``reducer`` for a smaller prompt. A reduction that does not get
        below 95% of the previous size falls back to plain truncation; if
        that is stuck too the loop gives up. Errors other than overflow end
        the loop immediately.

        Args:
            request: The initial request.
            reducer: Rebuilds the prompt for a token target. Defaults to
                :func:`truncate_prompt`.
            max_attempts: Total attempts, including the first.
            on_content_reduced: Awaited after every reduction.

        Returns:
            SelfHealingResult. Failures are reported through ``error``.
        """
        max_attempts = max_attempts or self.max_heal_attempts
        reducer = reducer or truncate_prompt
        prompt = request.prompt
        original_tokens = estimate_tokens(prompt)
        history = [original_tokens]
        last_error: Optional[RepoDocsError] = None
        attempts = 0

        while attempts < max_attempts:
            attempts += 1
            try:
                response = await self.call(replace(request, prompt=prompt))
            except ContextOverflowError as e:
                last_error = e
            except RepoDocsError as e:
                return SelfHealingResult(
                    content="",
                    attempts=attempts,
                    was_reduced=len(history) > 1,
                    original_tokens=original_tokens,
                    final_tokens=history[-1],
                    token_history=history,
                    error=e,
                )
            else:
                return SelfHealingResult(
                    content=response.content,
                    attempts=attempts,
                    was_reduced=len(history) > 1,
                    original_tokens=original_tokens,
                    final_tokens=history[-1],
                    token_history=history,
                    response=response,
                )

            if attempts >= max_attempts:
                break

            current_tokens = history[-1]
            limit = last_error.limit or math.floor(current_tokens * FALLBACK_REDUCTION_RATIO)
            target = calculate_content_reduction(current_tokens, limit).target_tokens
            target = min(target, math.floor(current_tokens * FALLBACK_REDUCTION_RATIO))

            reduced = reducer(prompt, target)
            reduced_tokens = estimate_tokens(reduced)
            if reduced_tokens > current_tokens * MIN_REDUCTION_PROGRESS:
                reduced = truncate_prompt(prompt, target)
                reduced_tokens = estimate_tokens(reduced)
            if reduced_tokens > current_tokens * MIN_REDUCTION_PROGRESS:
                logger.warning(
                    f"Prompt cannot be reduced below {reduced_tokens} tokens, giving up"
                )
                break

            prompt = reduced
            history.append(reduced_tokens)
            percent = (original_tokens - reduced_tokens) / original_tokens * 100
            logger.warning(
                f"Context overflow on attempt {attempts}: reduced prompt from "
                f"{current_tokens} to {reduced_tokens} tokens"
            )
            if on_content_reduced is not None:
                await on_content_reduced(
                    ContentReduction(
                        attempt=attempts,
                        original_tokens=original_tokens,
                        reduced_tokens=reduced_tokens,
                        reduction_percent=percent,
                    )
                )

        return SelfHealingResult(
            content="",
            attempts=attempts,
            was_reduced=len(history) > 1,
            original_tokens=original_tokens,
            final_tokens=history[-1],
            token_history=history,
            error=last_error
            or ContextOverflowError("Token limit exceeded after all retry attempts"),
        )

    async def check_connection(
        self,
        provider: str,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> dict:
        """Send a tiny uncached prompt to verify credentials and model availability."""
        start_time = time.perf_counter()
        try:
            response = await self.call(
                LLMRequest(
                    prompt='Say "OK" and nothing else.',
                    provider=provider,
                    model=model,
                    temperature=0.0,
                    max_tokens=50,
                    use_cache=False,
                    custom_api_key=api_key,
                    custom_base_url=base_url,
                )
            )
        except RepoDocsError as e:
            return {"success": False, "message": e.message, "kind": e.kind}
        latency_ms = int((time.perf_counter() - start_time) * 1000)
        if "ok" in response.content.lower():
            message = f"Connected successfully to {provider}"
        else:
            message = f"Connected but unexpected response: {response.content[:50]}"
        return {"success": True, "message": message, "latencyMs": latency_ms}
