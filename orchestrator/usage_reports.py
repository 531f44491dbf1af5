"""
Read-only cost and rate-limit views derived from stored queries and cache counters.

Nothing here is persisted: every figure is recomputed from the query store on demand.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from functools import partial
from typing import Any

from cache.resilient import ResilientCache
from config.registry import ResearchRegistry
from db.store import QueryStore, utc_now
from utils.cost_calculator import (
    QueryCostEstimate,
    SpendingSummary,
    estimate_query_cost,
    summarize_spending,
    summarize_spending_by_user,
)

from .errors import NotFound, ValidationError

MAX_REPORT_DAYS = 365


def spending_to_dict(summary: SpendingSummary) -> dict[str, Any]:
    return {
        "total_cost": round(summary.total_cost, 6),
        "query_count": summary.query_count,
        "average_cost_per_query": round(summary.average_cost_per_query, 6),
        "cost_by_service": {k: round(v, 6) for k, v in summary.cost_by_service.items()},
    }


class UsageReporter:
    def __init__(
        self,
        store: QueryStore,
        cache: ResilientCache,
        registry: ResearchRegistry,
        *,
        rate_limit: int = 20,
        rate_limit_window_s: int = 3600,
        daily_limit: int = 100,
        max_results: int = 25,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.cache = cache
        self.registry = registry
        self.rate_limit = rate_limit
        self.rate_limit_window_s = rate_limit_window_s
        self.daily_limit = daily_limit
        self.max_results = max_results
        self.clock = clock

    async def _db(self, fn: Callable, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args))

    async def query_cost(self, query_id: str, user_id: str | None = None) -> QueryCostEstimate:
        """
        Raises:
            NotFound: unknown id, or not owned by ``user_id``
        """
        record = await self._db(self.store.get_query, query_id)
        if record is None or (user_id is not None and record.user_id != user_id):
            raise NotFound("Query not found", details={"query_id": query_id})
        return estimate_query_cost(record, self.registry, self.max_results)

    async def cost_report(self, user_id: str | None = None, days: int = 30) -> dict[str, Any]:
        """Spending over the last ``days`` days for one user, or everyone with a per-user split."""
        if days < 1 or days > MAX_REPORT_DAYS:
            raise ValidationError(
                f"days must be between 1 and {MAX_REPORT_DAYS}", details={"field": "days"}
            )
        since = self.clock() - timedelta(days=days)
        queries = await self._db(self.store.list_queries_since, since, user_id)

        report: dict[str, Any] = {
            "user_id": user_id,
            "period_days": days,
            "since": since.isoformat(),
            "summary": spending_to_dict(
                summarize_spending(queries, self.registry, self.max_results)
            ),
        }
        if user_id is None:
            report["by_user"] = {
                uid: spending_to_dict(summary)
                for uid, summary in summarize_spending_by_user(
                    queries, self.registry, self.max_results
                ).items()
            }
        return report

    async def rate_limit_status(self, user_id: str) -> dict[str, Any]:
        counter = await self.cache.peek_counter(f"query:{user_id}")
        since = self.clock() - timedelta(days=1)
        daily = await self._db(self.store.list_queries_since, since, user_id)

        hourly: dict[str, Any] = {
            "limit": self.rate_limit,
            "window_s": self.rate_limit_window_s,
        }
        if counter is None:
            hourly.update({"used": None, "remaining": None, "reset_in_s": None, "degraded": True})
        else:
            hourly.update(
                {
                    "used": counter.count,
                    "remaining": max(0, self.rate_limit - counter.count),
                    "reset_in_s": counter.reset_in_s,
                    "degraded": False,
                }
            )
        return {
            "user_id": user_id,
            "hourly": hourly,
            "daily": {
                "limit": self.daily_limit,
                "used": len(daily),
                "remaining": max(0, self.daily_limit - len(daily)),
            },
        }
