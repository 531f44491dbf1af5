"""Query endpoints: submit, preview refinement, poll, list history and estimate cost."""

from fastapi import APIRouter, Depends, Query, status

from orchestrator.query_orchestrator import QueryOrchestrator
from orchestrator.usage_reports import UsageReporter
from server.dependencies import Principal, get_orchestrator, get_principal, get_reporter
from server.schemas.requests import QueryRequestDTO, RefineRequestDTO
from server.schemas.responses import (
    CostEstimateDTO,
    QueryDTO,
    QueryHistoryDTO,
    QueryResultDTO,
    RefinementDTO,
    SubmitResponseDTO,
)

router = APIRouter(prefix="/v1", tags=["Queries"])


@router.post(
    "/queries",
    response_model=SubmitResponseDTO,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_query(
    request: QueryRequestDTO,
    principal: Principal = Depends(get_principal),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
):
    """Accept a research query; processing continues in the background."""
    result = await orchestrator.submit_query(request.to_config(), principal.user_id)
    return SubmitResponseDTO.from_submit_result(result)


@router.post("/queries/refine", response_model=RefinementDTO)
async def refine_query(
    request: RefineRequestDTO,
    principal: Principal = Depends(get_principal),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
):
    """Preview the refined query for the caller without running the pipeline."""
    context = request.user_context
    refinement = await orchestrator.preview_refinement(
        request.query,
        principal.user_id,
        interests=context.interests if context else None,
        expertise_level=context.expertise_level if context else None,
    )
    return RefinementDTO.from_refinement(refinement)


@router.get("/queries", response_model=QueryHistoryDTO)
async def list_queries(
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
):
    records = await orchestrator.get_query_history(principal.user_id, limit)
    queries = [QueryDTO.from_record(r) for r in records]
    return QueryHistoryDTO(queries=queries, count=len(queries))


@router.get("/queries/{query_id}", response_model=QueryResultDTO)
async def get_query(
    query_id: str,
    principal: Principal = Depends(get_principal),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.get_query_results(query_id, principal.user_id)
    return QueryResultDTO.from_query_result(result)


@router.get("/queries/{query_id}/cost", response_model=CostEstimateDTO)
async def get_query_cost(
    query_id: str,
    principal: Principal = Depends(get_principal),
    reporter: UsageReporter = Depends(get_reporter),
):
    estimate = await reporter.query_cost(query_id, principal.user_id)
    return CostEstimateDTO.from_estimate(estimate)
