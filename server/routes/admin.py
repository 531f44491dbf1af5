"""Manager and admin endpoints: spending, quotas and the nightly research agent."""

from typing import Any

from fastapi import APIRouter, Depends, Query

from orchestrator.usage_reports import UsageReporter
from server.dependencies import Principal, get_reporter, get_runtime, require_roles
from server.runtime import ResearchRuntime
from server.schemas.requests import NightlyActionDTO
from server.schemas.responses import NightlyStatusDTO

router = APIRouter(prefix="/v1/admin", tags=["Admin"])

require_manager = require_roles("manager", "admin")
require_admin = require_roles("admin")


@router.get("/cost-report")
async def cost_report(
    user_id: str | None = None,
    days: int = Query(30),
    principal: Principal = Depends(require_manager),
    reporter: UsageReporter = Depends(get_reporter),
) -> dict[str, Any]:
    """Spending summary for one user, or for everyone with a per-user breakdown."""
    return await reporter.cost_report(user_id=user_id, days=days)


@router.get("/rate-limits/{user_id}")
async def rate_limits(
    user_id: str,
    principal: Principal = Depends(require_manager),
    reporter: UsageReporter = Depends(get_reporter),
) -> dict[str, Any]:
    return await reporter.rate_limit_status(user_id)


@router.post("/nightly")
async def nightly_action(
    request: NightlyActionDTO,
    principal: Principal = Depends(require_admin),
    runtime: ResearchRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """Run the nightly research agent now, or (re)install its cron schedule."""
    if request.action == "schedule":
        return {"action": "schedule", "schedule": runtime.scheduler.schedule()}
    job = await runtime.scheduler.trigger()
    return {"action": "trigger", "job": job}


@router.get("/nightly", response_model=NightlyStatusDTO)
async def nightly_status(
    principal: Principal = Depends(require_manager),
    runtime: ResearchRuntime = Depends(get_runtime),
):
    return NightlyStatusDTO(
        schedule=runtime.scheduler.status(),
        counts=runtime.job_queue.counts(),
        recent=[job.to_dict() for job in runtime.job_queue.recent()],
    )
