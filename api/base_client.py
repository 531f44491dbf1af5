import time
import uuid
from abc import ABC, abstractmethod
from typing import Any

from models.unified_response import FinishReason, NormalizedError, TokenUsage, UnifiedResponse

DEFAULT_MAX_TOKENS = 4000
DEFAULT_TEMPERATURE = 0.7

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": "stop",
    "end_turn": "stop",
    "stop_sequence": "stop",
    "length": "length",
    "max_tokens": "length",
    "tool_calls": "tool",
    "tool_use": "tool",
    "function_call": "tool",
    "content_filter": "content_filter",
    "safety": "content_filter",
    "recitation": "content_filter",
}


class BaseAIClient(ABC):
    """
    Abstract base class for model backends.

    Every client turns a (prompt, context) pair into a UnifiedResponse and never
    raises: provider failures come back as a UnifiedResponse carrying a
    NormalizedError. Clients are synchronous; the orchestrator runs them in an
    executor under a timeout.
    """

    provider_name: str = "base"
    is_local: bool = False

    def __init__(self, api_key: str | None, model_name: str | None = None, **kwargs):
        """
        Args:
            api_key: API key for the hosted service (None for local backends)
            model_name: Default model for completions
            **kwargs: Additional client-specific parameters
        """
        self.api_key = api_key
        self.model_name = model_name

    @abstractmethod
    def get_completion(
        self,
        prompt: str,
        *,
        context: str | None = None,
        system: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        **kwargs,
    ) -> UnifiedResponse:
        """
        Get a completion for ``prompt`` with optional ``context`` prepended.

        Returns:
            UnifiedResponse; on failure ``error`` is set and ``text`` is empty
        """

    def complete(
        self,
        prompt: str,
        context: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> UnifiedResponse:
        return self.get_completion(
            prompt, context=context, max_tokens=max_tokens, temperature=temperature
        )

    def is_available(self) -> bool:
        """Availability probe. Hosted backends are assumed reachable."""
        return True

    # -- helpers shared by the concrete clients --------------------------------

    def _generate_request_id(self) -> str:
        return f"req_{uuid.uuid4().hex[:16]}"

    def _measure_latency(self, start_time: float) -> int:
        return int((time.time() - start_time) * 1000)

    def _normalize_input(self, prompt: str, context: str | None = None) -> str:
        if not prompt or not prompt.strip():
            raise ValueError("prompt must be a non-empty string")
        if context:
            return f"Context: {context}\n\nQuery: {prompt}"
        return prompt

    def _normalize_finish_reason(self, reason: Any, provider: str | None = None) -> FinishReason:
        if reason is None:
            return None
        key = str(getattr(reason, "name", reason)).lower()
        return _FINISH_REASONS.get(key)

    def _normalize_error(self, e: Exception, provider: str) -> NormalizedError:
        """Map a provider/SDK exception onto the normalized error codes."""
        message = str(e)
        lowered = message.lower()
        status = getattr(e, "status_code", None)
        if status is None:
            response = getattr(e, "response", None)
            status = getattr(response, "status_code", None)
        details: dict[str, Any] = {"exception_type": type(e).__name__}
        if isinstance(status, int):
            details["status_code"] = status
        else:
            status = None

        def err(code: str, retryable: bool) -> NormalizedError:
            return NormalizedError(
                code=code, message=message, provider=provider, retryable=retryable, details=details
            )

        if isinstance(e, TimeoutError) or "timed out" in lowered or "timeout" in lowered:
            return err("timeout", True)
        if status in (401, 403) or "401" in message or "unauthorized" in lowered:
            return err("auth", False)
        if "invalid api key" in lowered or "authentication" in lowered:
            return err("auth", False)
        if status == 429 or "429" in message or "rate limit" in lowered:
            return err("rate_limit", True)
        if status == 400 or "400" in message or "bad request" in lowered:
            return err("bad_request", False)
        if (status is not None and status >= 500) or any(
            token in message for token in ("500", "502", "503", "504", "529")
        ):
            return err("provider_error", True)
        if "overloaded" in lowered or "connection" in lowered or "unavailable" in lowered:
            return err("provider_error", True)
        return err("unknown", False)

    def _create_error_response(
        self,
        request_id: str,
        error: NormalizedError,
        latency_ms: int,
        model: str | None = None,
    ) -> UnifiedResponse:
        return UnifiedResponse(
            request_id=request_id,
            text="",
            provider=self.provider_name,
            model=model or self.model_name or "unknown",
            latency_ms=latency_ms,
            token_usage=TokenUsage(),
            estimated_cost=0.0,
            finish_reason="error",
            error=error,
            metadata={},
        )
