"""OpenAlex works adapter (https://docs.openalex.org)."""

from typing import Any

from models.identifiers import SourceId

from .base import SourceAdapter
from .contracts import SearchFilters, SourceItem

OPENALEX_BASE_URL = "https://api.openalex.org"
MAX_PER_PAGE = 200


def reconstruct_abstract(inverted_index: dict[str, list[int]] | None) -> str:
    """Rebuild abstract text from OpenAlex's word -> positions index."""
    if not inverted_index:
        return ""
    positions: list[tuple[int, str]] = []
    for word, indexes in inverted_index.items():
        for idx in indexes:
            positions.append((idx, word))
    return " ".join(word for _, word in sorted(positions))


def _strip_prefix(value: str | None, prefix: str) -> str | None:
    if not value:
        return None
    return value[len(prefix) :] if value.startswith(prefix) else value


class OpenAlexAdapter(SourceAdapter):
    source_id = SourceId.OPENALEX

    def __init__(
        self, http, cache=None, *, mailto: str | None = None, api_key: str | None = None, **kwargs
    ):
        super().__init__(http, cache, **kwargs)
        self.mailto = mailto
        self.api_key = api_key

    def _headers(self) -> dict[str, str]:
        agent = "ResearchIntelligence/1.0"
        if self.mailto:
            agent += f" (mailto:{self.mailto})"
        return {"User-Agent": agent}

    def _base_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if self.mailto:
            params["mailto"] = self.mailto
        if self.api_key:
            params["api_key"] = self.api_key
        return params

    async def _search(
        self, query: str, filters: SearchFilters, max_results: int
    ) -> list[SourceItem]:
        search_text = " ".join([query, *filters.keywords])
        if filters.exclude_terms:
            search_text += "".join(f" NOT {term}" for term in filters.exclude_terms)

        params = self._base_params()
        params.update(
            {
                "search": search_text,
                "per-page": max(1, min(max_results, MAX_PER_PAGE)),
                "page": 1,
            }
        )

        filter_parts = []
        if filters.date_from:
            filter_parts.append(f"from_publication_date:{filters.date_from}")
        if filters.date_to:
            filter_parts.append(f"to_publication_date:{filters.date_to}")
        if filters.open_access_only:
            filter_parts.append("is_oa:true")
        if filter_parts:
            params["filter"] = ",".join(filter_parts)

        response = await self._get(
            f"{OPENALEX_BASE_URL}/works", params=params, headers=self._headers()
        )
        data = response.json()
        return [self._to_item(work) for work in data.get("results", [])][:max_results]

    async def get_work(self, work_id: str) -> SourceItem | None:
        return await self.lookup(work_id)

    async def _lookup(self, external_id: str) -> SourceItem | None:
        work_id = _strip_prefix(external_id, "https://openalex.org/")
        response = await self._get(
            f"{OPENALEX_BASE_URL}/works/{work_id}",
            params=self._base_params(),
            headers=self._headers(),
            allow_not_found=True,
        )
        if response is None:
            return None
        return self._to_item(response.json())

    def _to_item(self, work: dict[str, Any]) -> SourceItem:
        primary_location = work.get("primary_location") or {}
        venue = (primary_location.get("source") or {}).get("display_name")
        doi_url = work.get("doi")
        authors = tuple(
            (a.get("author") or {}).get("display_name", "")
            for a in work.get("authorships") or []
            if (a.get("author") or {}).get("display_name")
        )
        concepts = [c.get("display_name") for c in (work.get("concepts") or [])[:5]]

        return SourceItem(
            source=self.name,
            external_id=_strip_prefix(work["id"], "https://openalex.org/"),
            title=work.get("display_name") or work.get("title") or "",
            abstract=reconstruct_abstract(work.get("abstract_inverted_index")),
            published=work.get("publication_date"),
            relevance=work.get("cited_by_count"),
            url=primary_location.get("landing_page_url") or doi_url or work["id"],
            doi=_strip_prefix(doi_url, "https://doi.org/"),
            authors=authors,
            venue=venue,
            item_type="paper",
            extra={
                "concepts": [c for c in concepts if c],
                "is_oa": (work.get("open_access") or {}).get("is_oa"),
            },
        )
