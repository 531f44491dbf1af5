"""
Closed identifier sets for data sources, model backends and query lifecycle.

Identifiers arrive as plain strings at the HTTP/CLI boundary and are parsed into
these enums once; everything past the boundary dispatches on the enum.
"""

from collections.abc import Iterable
from enum import Enum


class SourceId(str, Enum):
    OPENALEX = "openalex"
    PUBMED = "pubmed"
    PATENTS = "patents"


class ModelId(str, Enum):
    CLAUDE = "claude"
    GPT4 = "gpt4"
    GEMINI = "gemini"
    OLLAMA = "ollama"


class QueryStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (QueryStatus.COMPLETED, QueryStatus.FAILED)


# Allowed predecessor states for each conditional status write.
ALLOWED_PREDECESSORS: dict[QueryStatus, tuple[QueryStatus, ...]] = {
    QueryStatus.PROCESSING: (QueryStatus.PENDING,),
    QueryStatus.COMPLETED: (QueryStatus.PENDING, QueryStatus.PROCESSING),
    QueryStatus.FAILED: (QueryStatus.PENDING, QueryStatus.PROCESSING),
}


def parse_identifiers(values: Iterable[str], enum_cls: type[Enum]) -> tuple:
    """
    Parse raw identifier strings into enum members, preserving first-seen order.

    Raises:
        ValueError: listing every unrecognized identifier
    """
    parsed = []
    unknown = []
    for raw in values:
        key = str(raw).strip().lower()
        try:
            member = enum_cls(key)
        except ValueError:
            unknown.append(str(raw))
            continue
        if member not in parsed:
            parsed.append(member)
    if unknown:
        valid = ", ".join(m.value for m in enum_cls)
        raise ValueError(f"Unknown identifier(s): {', '.join(unknown)}. Valid: {valid}")
    return tuple(parsed)
