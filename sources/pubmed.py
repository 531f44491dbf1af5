"""PubMed adapter over NCBI E-utilities (esearch for ids, efetch for records)."""

import xml.etree.ElementTree as ET
from typing import Any

from models.identifiers import SourceId
from orchestrator.errors import SourceUnavailable
from utils.logger import get_logger

from .base import SourceAdapter
from .contracts import SearchFilters, SourceItem

logger = get_logger(__name__)

PUBMED_BASE_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
MAX_RETMAX = 500

_MONTHS = {
    "jan": "01", "feb": "02", "mar": "03", "apr": "04", "may": "05", "jun": "06",
    "jul": "07", "aug": "08", "sep": "09", "oct": "10", "nov": "11", "dec": "12",
}  # fmt: skip


def _text(element: ET.Element | None) -> str:
    if element is None:
        return ""
    return "".join(element.itertext()).strip()


def _pdat(iso_date: str | None, default: str) -> str:
    # E-utilities expects YYYY/MM/DD
    return iso_date.replace("-", "/") if iso_date else default


def parse_pub_date(article: ET.Element) -> str | None:
    """Return the publication date as YYYY, YYYY-MM or YYYY-MM-DD."""
    pub_date = article.find(".//Article/Journal/JournalIssue/PubDate")
    if pub_date is None:
        pub_date = article.find(".//PubDate")
    if pub_date is None:
        return None

    year = _text(pub_date.find("Year"))
    if not year:
        medline = _text(pub_date.find("MedlineDate"))
        return medline[:4] if medline[:4].isdigit() else None

    month_raw = _text(pub_date.find("Month"))
    month = _MONTHS.get(month_raw[:3].lower(), "")
    if not month and month_raw.isdigit():
        month = month_raw.zfill(2)
    day = _text(pub_date.find("Day"))
    if month and day.isdigit():
        return f"{year}-{month}-{day.zfill(2)}"
    if month:
        return f"{year}-{month}"
    return year


def parse_article(article: ET.Element) -> dict[str, Any] | None:
    pmid = _text(article.find(".//MedlineCitation/PMID")) or _text(article.find(".//PMID"))
    if not pmid:
        return None

    abstract_parts = []
    for abs_el in article.findall(".//Abstract/AbstractText"):
        label = abs_el.get("Label")
        text = _text(abs_el)
        if text:
            abstract_parts.append(f"{label}: {text}" if label else text)

    doi = None
    for eloc in article.findall(".//ELocationID"):
        if eloc.get("EIdType") == "doi":
            doi = _text(eloc)
            break
    if not doi:
        for id_el in article.findall(".//ArticleIdList/ArticleId"):
            if id_el.get("IdType") == "doi":
                doi = _text(id_el)
                break

    authors = []
    for author in article.findall(".//AuthorList/Author"):
        collective = _text(author.find("CollectiveName"))
        if collective:
            authors.append(collective)
            continue
        parts = (_text(author.find("ForeName")), _text(author.find("LastName")))
        name = " ".join(part for part in parts if part)
        if name:
            authors.append(name)

    return {
        "pmid": pmid,
        "title": _text(article.find(".//ArticleTitle")),
        "abstract": " ".join(abstract_parts),
        "journal": _text(article.find(".//Journal/Title")) or None,
        "doi": doi,
        "authors": authors,
        "published": parse_pub_date(article),
        "keywords": [_text(k) for k in article.findall(".//KeywordList/Keyword") if _text(k)],
        "mesh_terms": [
            _text(m) for m in article.findall(".//MeshHeading/DescriptorName") if _text(m)
        ],
    }


class PubMedAdapter(SourceAdapter):
    source_id = SourceId.PUBMED

    def __init__(self, http, cache=None, *, api_key: str | None = None, **kwargs):
        super().__init__(http, cache, **kwargs)
        self.api_key = api_key

    def _with_key(self, params: dict[str, Any]) -> dict[str, Any]:
        if self.api_key:
            params["api_key"] = self.api_key
        return params

    def _term(self, query: str, filters: SearchFilters) -> str:
        term = query
        for keyword in filters.keywords:
            term += f" AND {keyword}"
        for excluded in filters.exclude_terms:
            term += f" NOT {excluded}"
        if filters.open_access_only:
            term += " AND free full text[sb]"
        return term

    async def _search(
        self, query: str, filters: SearchFilters, max_results: int
    ) -> list[SourceItem]:
        params: dict[str, Any] = {
            "db": "pubmed",
            "term": self._term(query, filters),
            "retmax": max(1, min(max_results, MAX_RETMAX)),
            "retmode": "json",
            "sort": "relevance",
        }
        if filters.date_from or filters.date_to:
            params.update(
                {
                    "datetype": "pdat",
                    "mindate": _pdat(filters.date_from, "1800/01/01"),
                    "maxdate": _pdat(filters.date_to, "3000/12/31"),
                }
            )

        response = await self._get(
            f"{PUBMED_BASE_URL}/esearch.fcgi", params=self._with_key(params)
        )
        id_list = response.json().get("esearchresult", {}).get("idlist", [])
        if not id_list:
            return []

        return await self._fetch(id_list[:max_results])

    async def get_article(self, pmid: str) -> SourceItem | None:
        return await self.lookup(pmid)

    async def _lookup(self, external_id: str) -> SourceItem | None:
        items = await self._fetch([external_id])
        return items[0] if items else None

    async def _fetch(self, pmids: list[str]) -> list[SourceItem]:
        params = self._with_key({"db": "pubmed", "id": ",".join(pmids), "retmode": "xml"})
        response = await self._get(f"{PUBMED_BASE_URL}/efetch.fcgi", params=params)

        try:
            root = ET.fromstring(response.text)
        except ET.ParseError as e:
            raise SourceUnavailable(self.name, f"unparseable efetch XML: {e}") from e

        records = [parse_article(a) for a in root.findall(".//PubmedArticle")]
        by_id = {r["pmid"]: r for r in records if r}
        # efetch does not promise esearch's relevance order
        return [self._to_item(by_id[pmid]) for pmid in pmids if pmid in by_id]

    def _to_item(self, record: dict[str, Any]) -> SourceItem:
        return SourceItem(
            source=self.name,
            external_id=record["pmid"],
            title=record["title"],
            abstract=record["abstract"],
            published=record["published"],
            relevance=None,
            url=f"https://pubmed.ncbi.nlm.nih.gov/{record['pmid']}/",
            doi=record["doi"],
            authors=tuple(record["authors"]),
            venue=record["journal"],
            item_type="paper",
            extra={"keywords": record["keywords"], "mesh_terms": record["mesh_terms"]},
        )
