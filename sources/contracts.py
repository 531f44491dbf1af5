"""Data contracts shared by the source adapters."""

from dataclasses import dataclass, field
from datetime import date
from typing import Any


@dataclass(frozen=True)
class SearchFilters:
    """
    Provider-neutral search filters. Dates are ISO ``YYYY-MM-DD`` strings.

    ``keywords`` are ANDed onto the query text and ``exclude_terms`` are negated
    where the provider supports it.
    """

    date_from: str | None = None
    date_to: str | None = None
    open_access_only: bool = False
    keywords: tuple[str, ...] = ()
    exclude_terms: tuple[str, ...] = ()

    def to_params(self) -> dict[str, Any]:
        return {
            "date_from": self.date_from,
            "date_to": self.date_to,
            "open_access_only": self.open_access_only,
            "keywords": list(self.keywords),
            "exclude_terms": list(self.exclude_terms),
        }

    @classmethod
    def from_refinement(cls, filters: dict[str, Any] | None) -> "SearchFilters":
        """
        Build filters from the ``filters`` object of a refinement payload.

        Malformed entries are dropped rather than rejected; the payload comes from an LLM.
        """
        if not isinstance(filters, dict):
            return cls()

        date_range = filters.get("dateRange")
        if isinstance(date_range, str):
            date_range = _parse_year_span(date_range)
        elif not isinstance(date_range, dict):
            date_range = {}

        return cls(
            date_from=_iso_date_or_none(date_range.get("from")),
            date_to=_iso_date_or_none(date_range.get("to")),
            open_access_only=bool(filters.get("openAccessOnly", False)),
            keywords=_string_tuple(filters.get("keywords")),
            exclude_terms=_string_tuple(filters.get("excludeTerms")),
        )


def _parse_year_span(value: str) -> dict[str, str]:
    """"2020-2024" -> {"from": "2020", "to": "2024-12-31"}; anything else -> {}."""
    parts = [p.strip() for p in value.split("-")]
    if len(parts) != 2 or not all(len(p) == 4 and p.isdigit() for p in parts):
        return {}
    return {"from": parts[0], "to": f"{parts[1]}-12-31"}


def _iso_date_or_none(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    # bare years are common in refinement output
    if len(raw) == 4 and raw.isdigit():
        return f"{raw}-01-01"
    try:
        return date.fromisoformat(raw[:10]).isoformat()
    except ValueError:
        return None


def _string_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(v.strip() for v in value if isinstance(v, str) and v.strip())


@dataclass(frozen=True)
class SourceItem:
    """A search hit normalized across providers."""

    source: str
    external_id: str
    title: str
    abstract: str = ""
    published: str | None = None
    relevance: int | None = None  # citation count or closest provider signal
    url: str | None = None
    doi: str | None = None
    authors: tuple[str, ...] = ()
    venue: str | None = None
    item_type: str = "paper"
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "external_id": self.external_id,
            "title": self.title,
            "abstract": self.abstract,
            "published": self.published,
            "relevance": self.relevance,
            "url": self.url,
            "doi": self.doi,
            "authors": list(self.authors),
            "venue": self.venue,
            "item_type": self.item_type,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourceItem":
        return cls(
            source=data["source"],
            external_id=data["external_id"],
            title=data.get("title", ""),
            abstract=data.get("abstract", ""),
            published=data.get("published"),
            relevance=data.get("relevance"),
            url=data.get("url"),
            doi=data.get("doi"),
            authors=tuple(data.get("authors") or ()),
            venue=data.get("venue"),
            item_type=data.get("item_type", "paper"),
            extra=dict(data.get("extra") or {}),
        )
