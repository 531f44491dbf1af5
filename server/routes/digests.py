"""Research digest endpoints."""

import asyncio

from fastapi import APIRouter, Depends, Query

from server.dependencies import Principal, get_principal, get_runtime
from server.runtime import ResearchRuntime
from server.schemas.responses import DigestDTO

router = APIRouter(prefix="/v1", tags=["Digests"])


@router.get("/digests", response_model=list[DigestDTO])
async def list_digests(
    limit: int = Query(30, ge=1, le=365),
    principal: Principal = Depends(get_principal),
    runtime: ResearchRuntime = Depends(get_runtime),
):
    """Return recent nightly digests (newest first)."""
    loop = asyncio.get_running_loop()
    digests = await loop.run_in_executor(None, runtime.store.list_digests, limit)
    return [DigestDTO.from_digest(d) for d in digests]
