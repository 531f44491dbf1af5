"""Synthesis prompt construction."""

from sources.contracts import SourceItem

MAX_CONTEXT_ITEMS = 10
MAX_ABSTRACT_CHARS = 1500

SYNTHESIS_SYSTEM_PROMPT = (
    "You are a research assistant for biomedical researchers. You synthesize literature "
    "and patent search results into concise, well-structured analyses and cite the items "
    "you rely on by their bracketed number."
)

SYNTHESIS_PROMPT = """Analyze these research results and provide:

1. Executive Summary (2-3 paragraphs)
2. Key Findings (bullet points)
3. Relevance Assessment
4. Recommended Next Steps

Original Query: "{query}"
"""


def format_item(index: int, item: SourceItem) -> str:
    lines = [f"[{index}] ({item.source}, {item.item_type}) {item.title}"]
    meta = []
    if item.published:
        meta.append(f"Published: {item.published}")
    if item.venue:
        meta.append(f"Venue: {item.venue}")
    if item.relevance is not None:
        meta.append(f"Citations: {item.relevance}")
    if item.doi:
        meta.append(f"DOI: {item.doi}")
    if meta:
        lines.append(" | ".join(meta))
    if item.abstract:
        abstract = item.abstract
        if len(abstract) > MAX_ABSTRACT_CHARS:
            abstract = abstract[:MAX_ABSTRACT_CHARS].rstrip() + "..."
        lines.append(f"Abstract: {abstract}")
    return "\n".join(lines)


def select_context_items(
    items: tuple[SourceItem, ...] | list[SourceItem], limit: int = MAX_CONTEXT_ITEMS
) -> list[SourceItem]:
    """
    Round-robin across sources so one prolific source cannot crowd out the others,
    keeping each source's own ranking.
    """
    by_source: dict[str, list[SourceItem]] = {}
    for item in items:
        by_source.setdefault(item.source, []).append(item)

    selected: list[SourceItem] = []
    rank = 0
    while len(selected) < limit and any(rank < len(v) for v in by_source.values()):
        for bucket in by_source.values():
            if rank < len(bucket) and len(selected) < limit:
                selected.append(bucket[rank])
        rank += 1
    return selected


def build_context(items: list[SourceItem]) -> str:
    if not items:
        return ""
    blocks = [format_item(i, item) for i, item in enumerate(items, start=1)]
    return "Research Results:\n\n" + "\n\n---\n\n".join(blocks)


def build_synthesis_prompt(query: str) -> str:
    return SYNTHESIS_PROMPT.format(query=query.replace('"', "'"))
