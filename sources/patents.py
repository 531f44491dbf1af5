"""Patent search adapter over the PatentsView query API."""

import json
from typing import Any

from models.identifiers import SourceId

from .base import SourceAdapter
from .contracts import SearchFilters, SourceItem

PATENTSVIEW_URL = "https://api.patentsview.org/patents/query"
PATENT_FIELDS = [
    "patent_number",
    "patent_title",
    "patent_abstract",
    "patent_date",
    "patent_num_cited_by_us_patents",
    "assignee_organization",
    "inventor_first_name",
    "inventor_last_name",
]
MAX_PER_PAGE = 100


class PatentsAdapter(SourceAdapter):
    source_id = SourceId.PATENTS

    def __init__(
        self,
        http,
        cache=None,
        *,
        base_url: str = PATENTSVIEW_URL,
        api_key: str | None = None,
        **kwargs,
    ):
        super().__init__(http, cache, **kwargs)
        self.base_url = base_url
        self.api_key = api_key

    def _headers(self) -> dict[str, str]:
        return {"X-Api-Key": self.api_key} if self.api_key else {}

    def _build_query(self, query: str, filters: SearchFilters) -> dict[str, Any]:
        text = " ".join([query, *filters.keywords])
        clauses: list[dict[str, Any]] = [{"_text_any": {"patent_abstract": text}}]
        if filters.date_from:
            clauses.append({"_gte": {"patent_date": filters.date_from}})
        if filters.date_to:
            clauses.append({"_lte": {"patent_date": filters.date_to}})
        for excluded in filters.exclude_terms:
            clauses.append({"_not": {"_text_any": {"patent_abstract": excluded}}})
        return clauses[0] if len(clauses) == 1 else {"_and": clauses}

    async def _query(self, q: dict[str, Any], per_page: int) -> list[dict[str, Any]]:
        params = {
            "q": json.dumps(q),
            "f": json.dumps(PATENT_FIELDS),
            "o": json.dumps({"per_page": per_page}),
        }
        response = await self._get(self.base_url, params=params, headers=self._headers())
        # PatentsView returns "patents": null when nothing matches
        return response.json().get("patents") or []

    async def _search(
        self, query: str, filters: SearchFilters, max_results: int
    ) -> list[SourceItem]:
        per_page = max(1, min(max_results, MAX_PER_PAGE))
        patents = await self._query(self._build_query(query, filters), per_page)
        return [self._to_item(p) for p in patents][:max_results]

    async def get_patent(self, patent_number: str) -> SourceItem | None:
        return await self.lookup(patent_number)

    async def _lookup(self, external_id: str) -> SourceItem | None:
        patents = await self._query({"patent_number": external_id}, 1)
        return self._to_item(patents[0]) if patents else None

    def _to_item(self, patent: dict[str, Any]) -> SourceItem:
        number = str(patent["patent_number"])
        assignees = patent.get("assignees") or []
        inventors = patent.get("inventors") or []
        inventor_names = tuple(
            " ".join(
                part
                for part in (inv.get("inventor_first_name"), inv.get("inventor_last_name"))
                if part
            )
            for inv in inventors
        )
        cited_by = patent.get("patent_num_cited_by_us_patents")
        assignee = assignees[0].get("assignee_organization") if assignees else None

        return SourceItem(
            source=self.name,
            external_id=number,
            title=patent.get("patent_title") or "",
            abstract=patent.get("patent_abstract") or "",
            published=patent.get("patent_date"),
            relevance=int(cited_by) if cited_by not in (None, "") else None,
            url=f"https://patents.google.com/patent/US{number}",
            authors=tuple(name for name in inventor_names if name),
            venue=assignee,
            item_type="patent",
            extra={"assignee": assignee},
        )
