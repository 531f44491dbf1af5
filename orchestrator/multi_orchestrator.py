"""
MultiModelOrchestrator - Concurrent execution of prompts across multiple model clients.

Runs the same prompt against multiple backends in parallel with per-call timeout
handling. Blocking client calls run on a thread pool owned by the orchestrator, so a
hung provider cannot starve other executor users such as the query store. Local backends are
probed for availability first and skipped when unreachable.
"""

import asyncio
import concurrent.futures
import uuid
from datetime import datetime, timezone

from api.base_client import BaseAIClient
from models.identifiers import ModelId
from models.multi_unified_response import MultiUnifiedResponse
from models.unified_response import NormalizedError, TokenUsage, UnifiedResponse
from utils.logger import get_logger

logger = get_logger(__name__)


class MultiModelOrchestrator:
    """
    Orchestrates parallel calls to multiple model clients.

    Example usage:
        orchestrator = MultiModelOrchestrator()
        clients = {ModelId.CLAUDE: claude_client, ModelId.GPT4: openai_client}
        result = await orchestrator.get_comparisons("Summarise ...", clients)
        for model_id, resp in result.responses:
            print(f"{model_id.value}: {resp.text[:100]}")
    """

    def __init__(self, default_timeout_s: float = 120.0, max_workers: int = 16):
        """
        Args:
            default_timeout_s: Default timeout in seconds for each model call
            max_workers: Size of the thread pool running blocking client calls
        """
        self.default_timeout_s = default_timeout_s
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="model-call"
        )

    def close(self) -> None:
        """Release the pool; calls still running finish on their own threads."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _create_error_response(
        self,
        client: BaseAIClient,
        request_id: str,
        latency_ms: int,
        code: str,
        message: str,
        retryable: bool,
        details: dict,
    ) -> UnifiedResponse:
        """Mirrors BaseAIClient._create_error_response() for failures outside the client."""
        error = NormalizedError(
            code=code,
            message=message,
            provider=client.provider_name,
            retryable=retryable,
            details=details,
        )
        return UnifiedResponse(
            request_id=request_id,
            text="",
            provider=client.provider_name,
            model=client.model_name or "unknown",
            latency_ms=latency_ms,
            token_usage=TokenUsage(),
            estimated_cost=0.0,
            finish_reason="error",
            error=error,
            metadata={},
        )

    async def _safe_call(
        self,
        model_id: ModelId,
        client: BaseAIClient,
        prompt: str,
        timeout_s: float,
        **kwargs,
    ) -> UnifiedResponse:
        """
        Safely call a client with timeout handling.

        Wraps the synchronous get_completion in an executor and applies timeout.
        Returns UnifiedResponse with error on timeout or unexpected exception.
        """
        request_id = str(uuid.uuid4())
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        try:
            return await asyncio.wait_for(
                loop.run_in_executor(
                    self._executor, lambda: client.get_completion(prompt, **kwargs)
                ),
                timeout=timeout_s,
            )

        except asyncio.TimeoutError:
            elapsed_ms = int((loop.time() - start_time) * 1000)
            logger.warning(
                f"Timeout for model {model_id.value} ({client.provider_name}/{client.model_name})",
                extra={
                    "extra_fields": {
                        "model_id": model_id.value,
                        "provider": client.provider_name,
                        "model": client.model_name,
                        "timeout_s": timeout_s,
                    }
                },
            )
            return self._create_error_response(
                client,
                request_id,
                elapsed_ms,
                code="timeout",
                message=f"Request timed out after {timeout_s}s",
                retryable=True,
                details={"timeout_seconds": timeout_s},
            )

        except Exception as e:
            elapsed_ms = int((loop.time() - start_time) * 1000)
            logger.error(
                f"Unexpected error for model {model_id.value}: {e}",
                extra={
                    "extra_fields": {
                        "model_id": model_id.value,
                        "provider": client.provider_name,
                        "model": client.model_name,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                },
            )
            return self._create_error_response(
                client,
                request_id,
                elapsed_ms,
                code="unknown",
                message=f"Unexpected error: {e!s}",
                retryable=False,
                details={"exception_type": type(e).__name__},
            )

    async def call(
        self,
        model_id: ModelId,
        client: BaseAIClient,
        prompt: str,
        timeout_s: float | None = None,
        **kwargs,
    ) -> UnifiedResponse:
        """Single-model call with the same timeout and error folding as the fan-out."""
        return await self._safe_call(
            model_id, client, prompt, timeout_s or self.default_timeout_s, **kwargs
        )

    async def _probe(self, model_id: ModelId, client: BaseAIClient) -> bool:
        if not client.is_local:
            return True
        loop = asyncio.get_running_loop()
        try:
            available = await loop.run_in_executor(self._executor, client.is_available)
        except Exception as e:
            logger.warning(
                f"Availability probe raised for model {model_id.value}: {e}",
                extra={"extra_fields": {"model_id": model_id.value, "error": str(e)}},
            )
            available = False
        if not available:
            logger.warning(
                f"Model {model_id.value} unavailable, skipping",
                extra={
                    "extra_fields": {"model_id": model_id.value, "provider": client.provider_name}
                },
            )
        return available

    async def get_comparisons(
        self,
        prompt: str,
        clients: dict[ModelId, BaseAIClient],
        timeout_s: float | None = None,
        request_group_id: str | None = None,
        **kwargs,
    ) -> MultiUnifiedResponse:
        """
        Execute prompt against multiple clients concurrently.

        Args:
            prompt: The prompt to send to all clients
            clients: Model clients keyed by model id, in dispatch order
            timeout_s: Per-call timeout in seconds (defaults to self.default_timeout_s)
            request_group_id: Optional caller-provided group id to correlate logs/results
            **kwargs: Additional arguments passed to each client's get_completion
                (context, system, max_tokens, temperature)

        Returns:
            MultiUnifiedResponse with responses in input order and skipped local models
        """
        timeout = timeout_s or self.default_timeout_s
        request_group_id = request_group_id or str(uuid.uuid4())
        created_at = datetime.now(timezone.utc)

        probes = await asyncio.gather(
            *(self._probe(model_id, client) for model_id, client in clients.items())
        )
        dispatched = [
            (model_id, client)
            for (model_id, client), available in zip(clients.items(), probes)
            if available
        ]
        skipped = tuple(
            model_id for model_id, available in zip(clients, probes) if not available
        )

        logger.info(
            f"Starting model fan-out with {len(dispatched)} clients",
            extra={
                "extra_fields": {
                    "request_group_id": request_group_id,
                    "client_count": len(dispatched),
                    "skipped": [m.value for m in skipped],
                    "timeout_s": timeout,
                }
            },
        )

        # _safe_call never raises, so gather needs no return_exceptions
        responses = await asyncio.gather(
            *(
                self._safe_call(model_id, client, prompt, timeout, **kwargs)
                for model_id, client in dispatched
            )
        )

        result = MultiUnifiedResponse(
            request_group_id=request_group_id,
            created_at=created_at,
            responses=tuple(zip((m for m, _ in dispatched), responses)),
            skipped=skipped,
        )

        logger.info(
            f"Model fan-out complete: {result.success_count} success, "
            f"{result.error_count} errors",
            extra={
                "extra_fields": {
                    "request_group_id": request_group_id,
                    "success_count": result.success_count,
                    "error_count": result.error_count,
                    "total_cost": result.total_cost,
                    "total_tokens": result.total_tokens,
                }
            },
        )

        return result
