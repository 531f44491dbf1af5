"""
ResearchRuntime - explicit wiring of every long-lived collaborator.

The process entry point (FastAPI lifespan or CLI) builds one runtime, calls ``start()``
and ``close()`` around its lifetime, and hands pieces of it to whoever needs them.
"""

import asyncio
from dataclasses import dataclass
from datetime import date
from typing import Any

import httpx
from sqlalchemy import Engine

from api.base_client import BaseAIClient
from api.factory import create_model_clients
from cache import create_cache_from_config
from cache.resilient import ResilientCache
from config.config import Config, SynthesisMode
from config.registry import ResearchRegistry
from db.engine import create_db_engine
from db.store import QueryStore
from jobs.nightly import NightlyResearchJob
from jobs.queue import JobQueue
from jobs.scheduler import NIGHTLY_JOB_ID, NightlyScheduler
from models.identifiers import ModelId, SourceId
from models.user_context import ProfileDirectory
from orchestrator.multi_orchestrator import MultiModelOrchestrator
from orchestrator.query_orchestrator import QueryOrchestrator
from orchestrator.refiner import ConceptExtractor, QueryRefiner
from orchestrator.source_dispatcher import SourceDispatcher
from orchestrator.usage_reports import UsageReporter
from sources import create_source_adapters
from sources.base import SourceAdapter
from utils.logger import get_logger

logger = get_logger(__name__)

SHUTDOWN_DRAIN_TIMEOUT_S = 30.0
USER_AGENT = "research-intel/1.0"


def _model_for_role(
    role: str, raw_id: str | None, clients: dict[ModelId, BaseAIClient]
) -> tuple[ModelId, BaseAIClient] | None:
    if not raw_id:
        logger.info(f"No {role} model configured; {role} disabled")
        return None
    try:
        model_id = ModelId(raw_id)
    except ValueError:
        logger.warning(f"Unknown {role} model '{raw_id}'; {role} disabled")
        return None
    client = clients.get(model_id)
    if client is None:
        logger.warning(f"{role.capitalize()} model '{raw_id}' has no client; {role} disabled")
        return None
    return model_id, client


@dataclass
class ResearchRuntime:
    config: Config
    registry: ResearchRegistry
    store: QueryStore
    cache: ResilientCache
    adapters: dict[SourceId, SourceAdapter]
    model_clients: dict[ModelId, BaseAIClient]
    orchestrator: QueryOrchestrator
    reporter: UsageReporter
    nightly_job: NightlyResearchJob
    job_queue: JobQueue
    scheduler: NightlyScheduler
    http: httpx.AsyncClient | None = None
    engine: Engine | None = None

    @classmethod
    def from_config(cls, config: Config | None = None) -> "ResearchRuntime":
        """Build the production runtime from environment configuration."""
        config = config or Config()
        for problem in config.validate():
            logger.warning(f"Configuration problem: {problem}")

        registry = ResearchRegistry.from_yaml(config.REGISTRY_PATH).with_model_overrides(
            config.MODEL_NAME_OVERRIDES
        )
        engine = create_db_engine(config.DATABASE_URL)
        cache = create_cache_from_config(config)
        http = httpx.AsyncClient(
            timeout=config.SOURCE_TIMEOUT_S,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
        return cls.assemble(
            config,
            registry=registry,
            store=QueryStore(engine),
            cache=cache,
            adapters=create_source_adapters(config, http, cache),
            model_clients=create_model_clients(config, registry),
            http=http,
            engine=engine,
        )

    @classmethod
    def assemble(
        cls,
        config: Config,
        *,
        registry: ResearchRegistry,
        store: QueryStore,
        cache: ResilientCache,
        adapters: dict[SourceId, SourceAdapter],
        model_clients: dict[ModelId, BaseAIClient],
        http: httpx.AsyncClient | None = None,
        engine: Engine | None = None,
    ) -> "ResearchRuntime":
        """Wire orchestration components around already-built leaves (tests pass fakes)."""
        models = MultiModelOrchestrator(
            default_timeout_s=config.MODEL_TIMEOUT_S, max_workers=config.MODEL_MAX_WORKERS
        )

        refiner = None
        picked = _model_for_role("refinement", config.REFINEMENT_MODEL, model_clients)
        if picked:
            refiner = QueryRefiner(*picked, models=models, timeout_s=config.MODEL_TIMEOUT_S)

        extractor = None
        picked = _model_for_role("concept extraction", config.CONCEPT_MODEL, model_clients)
        if picked:
            extractor = ConceptExtractor(*picked, models=models, timeout_s=config.MODEL_TIMEOUT_S)

        try:
            synthesis_mode = config.synthesis_mode
        except ValueError:
            synthesis_mode = SynthesisMode.COMBINED

        dispatcher = SourceDispatcher(
            adapters,
            max_concurrency=config.FANOUT_MAX_CONCURRENCY,
            timeout_s=config.SOURCE_TIMEOUT_S * (config.SOURCE_MAX_RETRIES + 1),
        )
        orchestrator = QueryOrchestrator(
            store,
            dispatcher,
            model_clients,
            cache,
            models=models,
            refiner=refiner,
            profiles=ProfileDirectory.from_yaml(config.RESEARCHER_PROFILES_PATH),
            synthesis_mode=synthesis_mode,
            rate_limit=config.RATE_LIMIT_PER_HOUR,
            rate_limit_window_s=config.RATE_LIMIT_WINDOW_SECONDS,
            max_results=config.SOURCE_MAX_RESULTS,
            max_concurrent_queries=config.MAX_CONCURRENT_QUERIES,
            model_timeout_s=config.MODEL_TIMEOUT_S,
        )
        reporter = UsageReporter(
            store,
            cache,
            registry,
            rate_limit=config.RATE_LIMIT_PER_HOUR,
            rate_limit_window_s=config.RATE_LIMIT_WINDOW_SECONDS,
            daily_limit=config.RATE_LIMIT_PER_DAY,
            max_results=config.SOURCE_MAX_RESULTS,
        )
        nightly_job = NightlyResearchJob(
            store,
            adapters,
            registry,
            extractor,
            timeout_s=config.SOURCE_TIMEOUT_S * (config.SOURCE_MAX_RETRIES + 1),
            max_concurrency=config.FANOUT_MAX_CONCURRENCY,
        )

        async def run_nightly(payload: dict[str, Any]) -> dict[str, Any]:
            raw_date = payload.get("date")
            run_date = date.fromisoformat(raw_date[:10]) if raw_date else None
            result = await nightly_job.run(run_date)
            return result.to_dict()

        job_queue = JobQueue(NIGHTLY_JOB_ID, run_nightly, cache=cache)
        scheduler = NightlyScheduler(job_queue, cron=config.NIGHTLY_CRON)

        return cls(
            config=config,
            registry=registry,
            store=store,
            cache=cache,
            adapters=adapters,
            model_clients=model_clients,
            orchestrator=orchestrator,
            reporter=reporter,
            nightly_job=nightly_job,
            job_queue=job_queue,
            scheduler=scheduler,
            http=http,
            engine=engine,
        )

    async def start(self, recover: bool = True) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.store.create_tables)
        if not await self.cache.is_healthy():
            logger.warning(
                "Cache backend unreachable at startup; running degraded",
                extra={"extra_fields": {"backend": self.cache.backend_name}},
            )
        await self.job_queue.start()
        if recover:
            await self.orchestrator.recover_interrupted()
        if self.config.NIGHTLY_AUTOSCHEDULE:
            self.scheduler.schedule()

        logger.info(
            "Research runtime started",
            extra={
                "extra_fields": {
                    "models": [m.value for m in self.model_clients],
                    "sources": [s.value for s in self.adapters],
                    "cache_backend": self.cache.backend_name,
                }
            },
        )

    async def close(self) -> None:
        self.scheduler.shutdown()
        await self.job_queue.stop()
        try:
            await asyncio.wait_for(self.orchestrator.drain(), timeout=SHUTDOWN_DRAIN_TIMEOUT_S)
        except asyncio.TimeoutError:
            logger.warning(
                f"{self.orchestrator.in_flight} queries still running at shutdown; "
                "they will be marked FAILED on the next start"
            )

        self.orchestrator.models.close()
        if self.http is not None:
            await self.http.aclose()
        await self.cache.close()
        for client in self.model_clients.values():
            close = getattr(client, "close", None)
            if callable(close):
                close()
        if self.engine is not None:
            self.engine.dispose()
        logger.info("Research runtime closed")
