"""Literature and patent source adapters."""

import httpx

from cache.resilient import ResilientCache
from config.config import Config
from models.identifiers import SourceId

from .base import LOOKUP_TTL_S, SEARCH_TTL_S, SourceAdapter
from .contracts import SearchFilters, SourceItem
from .openalex import OpenAlexAdapter
from .patents import PatentsAdapter
from .pubmed import PubMedAdapter


def create_source_adapters(
    config: Config, http: httpx.AsyncClient, cache: ResilientCache | None
) -> dict[SourceId, SourceAdapter]:
    """Build one adapter per SourceId; every enum member must have an adapter."""
    common = {
        "timeout_s": config.SOURCE_TIMEOUT_S,
        "max_retries": config.SOURCE_MAX_RETRIES,
        "backoff_s": config.SOURCE_RETRY_BACKOFF_S,
    }
    adapters: dict[SourceId, SourceAdapter] = {
        SourceId.OPENALEX: OpenAlexAdapter(
            http, cache, mailto=config.OPENALEX_MAILTO, api_key=config.OPENALEX_API_KEY, **common
        ),
        SourceId.PUBMED: PubMedAdapter(http, cache, api_key=config.PUBMED_API_KEY, **common),
        SourceId.PATENTS: PatentsAdapter(
            http,
            cache,
            base_url=config.PATENTSVIEW_BASE_URL,
            api_key=config.PATENTSVIEW_API_KEY,
            **common,
        ),
    }
    missing = set(SourceId) - set(adapters)
    if missing:
        raise ValueError(f"No adapter for sources: {sorted(m.value for m in missing)}")
    return adapters


__all__ = [
    "LOOKUP_TTL_S",
    "OpenAlexAdapter",
    "PatentsAdapter",
    "PubMedAdapter",
    "SEARCH_TTL_S",
    "SearchFilters",
    "SourceAdapter",
    "SourceItem",
    "create_source_adapters",
]
