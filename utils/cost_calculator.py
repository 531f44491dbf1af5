"""
Cost calculation for model usage and per-query cost reports.

``CostCalculator`` prices a single completion from token usage. The module-level
functions derive read-only cost views from stored queries: an estimate per query
(from its chosen sources/models and text length) and spending summaries per user
or organization. None of these are persisted.
"""

import math
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from config.pricing import ModelPricing
from config.registry import ResearchRegistry
from models.research import QueryRecord

# Token heuristics for estimating a query before (or without) real usage numbers.
CHARS_PER_TOKEN = 4
PROMPT_OVERHEAD_TOKENS = 500
TOKENS_PER_RESULT = 100
ESTIMATED_OUTPUT_TOKENS = 4000
DEFAULT_MAX_RESULTS = 25


class CostCalculator:
    """
    Calculate costs based on token usage and model pricing.
    """

    def __init__(self, model_type: str, model_name: str):
        """
        Args:
            model_type: Provider name ('anthropic', 'openai', 'gemini', 'ollama')
            model_name: The specific model name
        """
        self.model_type = model_type.lower()
        self.model_name = model_name
        self.pricing = ModelPricing.get_model_pricing(self.model_type, self.model_name)

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> dict[str, float]:
        """
        Calculate cost for a single API call.

        Returns:
            Dictionary with input_cost, output_cost and total_cost in USD
        """
        if not self.pricing:
            return {"input_cost": 0.0, "output_cost": 0.0, "total_cost": 0.0}

        input_cost = (prompt_tokens * self.pricing["input"]) / 1_000_000
        output_cost = (completion_tokens * self.pricing["output"]) / 1_000_000
        total_cost = input_cost + output_cost

        return {"input_cost": input_cost, "output_cost": output_cost, "total_cost": total_cost}

    def format_cost(self, cost: float, currency: str = "USD") -> str:
        if currency == "USD":
            return f"${cost:.6f}"
        return f"{cost:.6f} {currency}"

    def get_pricing_info(self) -> dict[str, Any]:
        if not self.pricing:
            return {
                "model_type": self.model_type,
                "model_name": self.model_name,
                "pricing_available": False,
                "message": "Pricing information not available for this model",
            }

        return {
            "model_type": self.model_type,
            "model_name": self.model_name,
            "pricing_available": True,
            "input_price_per_million": self.pricing["input"],
            "output_price_per_million": self.pricing["output"],
        }


@dataclass(frozen=True)
class CostLine:
    service: str
    type: str  # "llm" or "datasource"
    cost: float
    basis: str
    unit: str = "USD"


@dataclass(frozen=True)
class QueryCostEstimate:
    query_id: str
    lines: tuple[CostLine, ...]

    @property
    def total_cost(self) -> float:
        return sum(line.cost for line in self.lines)


@dataclass
class SpendingSummary:
    total_cost: float = 0.0
    query_count: int = 0
    cost_by_service: dict[str, float] = field(default_factory=dict)

    @property
    def average_cost_per_query(self) -> float:
        return self.total_cost / self.query_count if self.query_count else 0.0


def estimate_input_tokens(text: str, max_results: int = DEFAULT_MAX_RESULTS) -> int:
    text_tokens = math.ceil(len(text) / CHARS_PER_TOKEN)
    return text_tokens + PROMPT_OVERHEAD_TOKENS + max_results * TOKENS_PER_RESULT


def estimate_query_cost(
    query: QueryRecord,
    registry: ResearchRegistry,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> QueryCostEstimate:
    """Estimate the cost of one query from its sources, models and text length."""
    lines: list[CostLine] = []

    for source_id in query.sources:
        lines.append(
            CostLine(
                service=source_id.value,
                type="datasource",
                cost=ModelPricing.get_source_cost(source_id.value),
                basis="free public API",
            )
        )

    input_tokens = estimate_input_tokens(query.original_query, max_results)
    for model_id in query.models:
        entry = registry.model(model_id)
        if entry is None:
            continue
        calc = CostCalculator(entry.provider, entry.model_name)
        cost = calc.calculate_cost(input_tokens, ESTIMATED_OUTPUT_TOKENS)["total_cost"]
        basis = (
            f"~{input_tokens} input + {ESTIMATED_OUTPUT_TOKENS} output tokens"
            if calc.pricing
            else "pricing unavailable"
        )
        lines.append(CostLine(service=model_id.value, type="llm", cost=cost, basis=basis))

    return QueryCostEstimate(query_id=query.id, lines=tuple(lines))


def summarize_spending(
    queries: Iterable[QueryRecord],
    registry: ResearchRegistry,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> SpendingSummary:
    summary = SpendingSummary()
    by_service: dict[str, float] = defaultdict(float)
    for query in queries:
        estimate = estimate_query_cost(query, registry, max_results)
        summary.query_count += 1
        summary.total_cost += estimate.total_cost
        for line in estimate.lines:
            by_service[line.service] += line.cost
    summary.cost_by_service = dict(by_service)
    return summary


def summarize_spending_by_user(
    queries: Iterable[QueryRecord],
    registry: ResearchRegistry,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> dict[str, SpendingSummary]:
    grouped: dict[str, list[QueryRecord]] = defaultdict(list)
    for query in queries:
        grouped[query.user_id].append(query)
    return {
        user_id: summarize_spending(user_queries, registry, max_results)
        for user_id, user_queries in grouped.items()
    }
