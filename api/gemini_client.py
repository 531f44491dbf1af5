import time

from google import genai
from google.genai import types

from models.unified_response import TokenUsage, UnifiedResponse
from utils.cost_calculator import CostCalculator
from utils.logger import get_logger

from .base_client import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, BaseAIClient

logger = get_logger(__name__)


class GeminiClient(BaseAIClient):
    """
    Google Gemini client (google-genai package) returning UnifiedResponse.
    """

    provider_name = "gemini"

    def __init__(
        self, api_key: str, model_name: str = "gemini-2.5-flash", timeout_s: float = 120.0, **kwargs
    ):
        super().__init__(api_key, model_name=model_name, **kwargs)
        if not api_key:
            raise ValueError("API key is required for Gemini")
        # HttpOptions.timeout is in milliseconds
        self.client = genai.Client(
            api_key=api_key, http_options=types.HttpOptions(timeout=int(timeout_s * 1000))
        )
        self.cost_calculator = CostCalculator(model_type="gemini", model_name=model_name)

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
        request_id = self._generate_request_id()
        start_time = time.time()
        model = kwargs.get("model", self.model_name)

        try:
            generation_config = {"temperature": temperature, "max_output_tokens": max_tokens}
            if system:
                generation_config["system_instruction"] = system

            response = self.client.models.generate_content(
                model=model,
                contents=self._normalize_input(prompt, context),
                config=generation_config,
            )
            latency_ms = self._measure_latency(start_time)

            text = getattr(response, "text", None) or ""
            usage_metadata = getattr(response, "usage_metadata", None)
            token_usage = TokenUsage(
                prompt_tokens=getattr(usage_metadata, "prompt_token_count", 0) or 0,
                completion_tokens=getattr(usage_metadata, "candidates_token_count", 0) or 0,
                total_tokens=getattr(usage_metadata, "total_token_count", 0) or 0,
            )
            estimated_cost = self.cost_calculator.calculate_cost(
                token_usage.prompt_tokens, token_usage.completion_tokens
            )["total_cost"]

            candidates = getattr(response, "candidates", None) or []
            finish_reason = self._normalize_finish_reason(
                candidates[0].finish_reason if candidates else None, provider=self.provider_name
            )

            logger.info(
                "Gemini completion successful",
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
                finish_reason=finish_reason,
            )

        except Exception as e:
            latency_ms = self._measure_latency(start_time)
            error = self._normalize_error(e, provider=self.provider_name)
            logger.error(
                f"Gemini completion failed: {error.code}",
                extra={
                    "extra_fields": {
                        "request_id": request_id,
                        "model": model,
                        "error_code": error.code,
                        "error_message": error.message,
                    }
                },
            )
            return self._create_error_response(
                request_id=request_id, error=error, latency_ms=latency_ms, model=model
            )
