import time

import anthropic

from models.unified_response import TokenUsage, UnifiedResponse
from utils.cost_calculator import CostCalculator
from utils.logger import get_logger

from .base_client import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, BaseAIClient

logger = get_logger(__name__)


class ClaudeClient(BaseAIClient):
    """
    Anthropic Messages API client returning UnifiedResponse.
    Backs the ``claude`` model identifier.
    """

    provider_name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model_name: str = "claude-sonnet-4-20250514",
        timeout_s: float = 120.0,
        **kwargs,
    ):
        super().__init__(api_key, model_name=model_name, **kwargs)
        self.client = anthropic.Anthropic(api_key=api_key, timeout=timeout_s)
        self.cost_calculator = CostCalculator(model_type="anthropic", model_name=model_name)

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
        Get a completion from Claude.

        IMPORTANT: Never raises exceptions - returns UnifiedResponse with error instead
        """
        request_id = self._generate_request_id()
        start_time = time.time()
        model = kwargs.get("model", self.model_name)

        try:
            request = {
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": [
                    {"role": "user", "content": self._normalize_input(prompt, context)}
                ],
            }
            if system:
                request["system"] = system

            response = self.client.messages.create(**request)
            latency_ms = self._measure_latency(start_time)

            text = "".join(
                block.text for block in response.content if getattr(block, "type", None) == "text"
            )
            token_usage = TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
            )
            estimated_cost = self.cost_calculator.calculate_cost(
                token_usage.prompt_tokens, token_usage.completion_tokens
            )["total_cost"]

            logger.info(
                "Claude completion successful",
                extra={
                    "extra_fields": {
                        "request_id": request_id,
                        "model": model,
                        "latency_ms": latency_ms,
                        "tokens": token_usage.total_tokens,
                        "cost": estimated_cost,
                    }
                },
            )

            return UnifiedResponse(
                request_id=request_id,
                text=text,
                provider=self.provider_name,
                model=model,
                latency_ms=latency_ms,
                token_usage=token_usage,
                estimated_cost=estimated_cost,
                finish_reason=self._normalize_finish_reason(
                    response.stop_reason, provider=self.provider_name
                ),
            )

        except Exception as e:
            latency_ms = self._measure_latency(start_time)
            error = self._normalize_error(e, provider=self.provider_name)
            logger.error(
                f"Claude completion failed: {error.code}",
                extra={
                    "extra_fields": {
                        "request_id": request_id,
                        "model": model,
                        "error_code": error.code,
                        "error_message": error.message,
                        "retryable": error.retryable,
                    }
                },
            )
            return self._create_error_response(
                request_id=request_id, error=error, latency_ms=latency_ms, model=model
            )
