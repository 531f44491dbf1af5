import time

import httpx

from models.unified_response import TokenUsage, UnifiedResponse
from utils.logger import get_logger

from .base_client import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, BaseAIClient

logger = get_logger(__name__)

PROBE_TIMEOUT_S = 3.0


class OllamaClient(BaseAIClient):
    """
    Client for a locally hosted Ollama server.

    Local models cost nothing per token. ``is_available`` probes ``/api/tags`` so the
    orchestrator can skip the model when the server is not running.
    """

    provider_name = "ollama"
    is_local = True

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model_name: str = "llama3",
        timeout_s: float = 120.0,
        http: httpx.Client | None = None,
        **kwargs,
    ):
        super().__init__(None, model_name=model_name, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.http = http or httpx.Client(base_url=self.base_url, timeout=timeout_s)

    def is_available(self) -> bool:
        try:
            response = self.http.get("/api/tags", timeout=PROBE_TIMEOUT_S)
        except httpx.HTTPError as e:
            logger.warning(
                "Ollama availability probe failed",
                extra={"extra_fields": {"base_url": self.base_url, "error": str(e)}},
            )
            return False
        return response.status_code == 200

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
            payload = {
                "model": model,
                "prompt": self._normalize_input(prompt, context),
                "stream": False,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            }
            if system:
                payload["system"] = system

            response = self.http.post("/api/generate", json=payload)
            response.raise_for_status()
            data = response.json()
            latency_ms = self._measure_latency(start_time)

            token_usage = TokenUsage(
                prompt_tokens=int(data.get("prompt_eval_count") or 0),
                completion_tokens=int(data.get("eval_count") or 0),
            )

            logger.info(
                "Ollama completion successful",
                extra={
                    "extra_fields": {
                        "request_id": request_id,
                        "model": model,
                        "latency_ms": latency_ms,
                        "tokens": token_usage.total_tokens,
                    }
                },
            )

            return UnifiedResponse(
                request_id=request_id,
                text=data.get("response", ""),
                provider=self.provider_name,
                model=model,
                latency_ms=latency_ms,
                token_usage=token_usage,
                estimated_cost=0.0,
                finish_reason=self._normalize_finish_reason(
                    data.get("done_reason") or ("stop" if data.get("done") else None),
                    provider=self.provider_name,
                ),
            )

        except Exception as e:
            latency_ms = self._measure_latency(start_time)
            error = self._normalize_error(e, provider=self.provider_name)
            logger.error(
                f"Ollama completion failed: {error.code}",
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

    def close(self) -> None:
        self.http.close()
