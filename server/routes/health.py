"""Health check endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from server.dependencies import get_runtime
from server.runtime import ResearchRuntime
from server.schemas.responses import HealthResponseDTO

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponseDTO)
async def health_check(runtime: ResearchRuntime = Depends(get_runtime)):
    """Liveness plus cache reachability; a degraded cache still reports healthy."""
    cache_healthy = await runtime.cache.is_healthy()
    return HealthResponseDTO(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        version="1.0.0",
        cache_backend=runtime.cache.backend_name,
        cache_healthy=cache_healthy,
    )
