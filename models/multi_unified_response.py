"""
MultiUnifiedResponse - Aggregation container for a parallel model fan-out.

Immutable dataclass that wraps the UnifiedResponse objects produced by
concurrent synthesis calls, keyed back to the model identifiers that produced them.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from models.identifiers import ModelId
from models.unified_response import UnifiedResponse


@dataclass(frozen=True)
class MultiUnifiedResponse:
    """
    Immutable container for multiple UnifiedResponse objects.

    Attributes:
        request_group_id: Unique id for this fan-out (usually the query id)
        created_at: UTC timestamp when the fan-out was initiated
        responses: Tuple of (model id, UnifiedResponse) pairs in dispatch order
        skipped: Model ids that were not dispatched because their availability probe failed
    """

    request_group_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    responses: tuple[tuple[ModelId, UnifiedResponse], ...] = field(default_factory=tuple)
    skipped: tuple[ModelId, ...] = field(default_factory=tuple)

    @property
    def total_cost(self) -> float:
        """Sum of estimated_cost for all successful responses."""
        return sum(
            r.estimated_cost for _, r in self.responses if r.is_success and r.estimated_cost
        )

    @property
    def total_tokens(self) -> int:
        """Sum of total_tokens for all successful responses."""
        return sum(r.token_usage.total_tokens for _, r in self.responses if r.is_success)

    @property
    def success_count(self) -> int:
        return sum(1 for _, r in self.responses if r.is_success)

    @property
    def error_count(self) -> int:
        return sum(1 for _, r in self.responses if r.is_error)

    def with_content(self) -> list[tuple[ModelId, UnifiedResponse]]:
        """Pairs whose response succeeded and carries non-empty text."""
        return [(model_id, r) for model_id, r in self.responses if r.has_content]

    def __len__(self) -> int:
        return len(self.responses)
