"""
Models package: identifiers, domain records and unified model responses.
"""

from .identifiers import ModelId, QueryStatus, SourceId
from .multi_unified_response import MultiUnifiedResponse
from .research import (
    NewResponse,
    QueryConfig,
    QueryRecord,
    QueryResult,
    ResearchDigest,
    ResponseRecord,
    SubmitResult,
)
from .unified_response import NormalizedError, TokenUsage, UnifiedResponse

__all__ = [
    "ModelId",
    "MultiUnifiedResponse",
    "NewResponse",
    "NormalizedError",
    "QueryConfig",
    "QueryRecord",
    "QueryResult",
    "QueryStatus",
    "ResearchDigest",
    "ResponseRecord",
    "SourceId",
    "SubmitResult",
    "TokenUsage",
    "UnifiedResponse",
]
