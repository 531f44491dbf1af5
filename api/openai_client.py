import time

import openai

from models.unified_response import TokenUsage, UnifiedResponse
from utils.cost_calculator import CostCalculator
from utils.logger import get_logger

from .base_client import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, BaseAIClient

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a research assistant helping scientists find and synthesize "
    "information from academic literature and patents."
)


class OpenAIClient(BaseAIClient):
    """
    OpenAI chat completions client returning UnifiedResponse.
    Backs the ``gpt4`` model identifier.
    """

    provider_name = "openai"

    def __init__(
        self, api_key: str, model_name: str = "gpt-4-turbo", timeout_s: float = 120.0, **kwargs
    ):
        super().__init__(api_key, model_name=model_name, **kwargs)
        self.client = openai.OpenAI(api_key=api_key, timeout=timeout_s)
        self.cost_calculator = CostCalculator(model_type="openai", model_name=model_name)

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
        Get a completion from the OpenAI API.

        IMPORTANT: Never raises exceptions - returns UnifiedResponse with error instead
        """
        request_id = self._generate_request_id()
        start_time = time.time()
        model = kwargs.get("model", self.model_name)

        try:
            user_content = self._normalize_input(prompt, context)
            response = self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system or DEFAULT_SYSTEM_PROMPT},
                    {"role": "user", "content": user_content},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )

            latency_ms = self._measure_latency(start_time)
            text = response.choices[0].message.content or ""

            usage = getattr(response, "usage", None)
            token_usage = TokenUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            )
            estimated_cost = self.cost_calculator.calculate_cost(
                token_usage.prompt_tokens, token_usage.completion_tokens
            )["total_cost"]

            logger.info(
                "OpenAI completion successful",
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
                    response.choices[0].finish_reason, provider=self.provider_name
                ),
            )

        except Exception as e:
            latency_ms = self._measure_latency(start_time)
            error = self._normalize_error(e, provider=self.provider_name)
            logger.error(
                f"OpenAI completion failed: {error.code}",
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
