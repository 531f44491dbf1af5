"""
Query refinement and concept extraction over a model client.

Both steps ask a model for JSON-shaped text. The reply is treated as untrusted: the
first balanced JSON value is extracted, its shape is validated, and any failure falls
back to a neutral value (original query text / empty concept list) instead of raising.
"""

from dataclasses import dataclass, field, replace
from typing import Any

from api.base_client import BaseAIClient
from models.identifiers import ModelId
from models.user_context import ResearcherProfile
from sources.contracts import SearchFilters
from utils.json_extract import extract_json_array, extract_json_object
from utils.logger import get_logger

from .multi_orchestrator import MultiModelOrchestrator

logger = get_logger(__name__)

FALLBACK_REASONING = "refinement unavailable"
REFINEMENT_MAX_TOKENS = 1024
CONCEPT_MAX_TOKENS = 1000
MAX_CONCEPTS = 25
MAX_CONCEPT_TEXT_CHARS = 8000

REFINEMENT_SYSTEM_PROMPT = (
    "You are a research query optimization assistant for biomedical and life-science "
    "researchers. You reply with a single JSON object and nothing else."
)

REFINEMENT_PROMPT = """Task: Refine the following research query to get better search results \
from academic literature and patent databases.
{profile_block}

Original Query: "{query}"

Analyze the query and provide:
1. A refined version that is:
   - More specific and focused
   - Uses appropriate technical terminology
   - Includes relevant timeframes if applicable
   - Scoped to avoid overly broad results

2. Brief reasoning (2-3 sentences) explaining why the refinement improves results

3. 2-4 specific improvements made (as key changes)

4. Recommended filters:
   - Date range (if relevant)
   - Key terms to emphasize
   - Terms to exclude (if any)

5. The key scientific concepts in the query

Return your response as a JSON object with this structure:
{{
  "refinedQuery": "the improved query string",
  "reasoning": "explanation of improvements",
  "suggestions": [
    {{"term": "specific change", "explanation": "why this helps"}}
  ],
  "filters": {{
    "dateRange": {{"from": "YYYY-MM-DD or null", "to": "YYYY-MM-DD or null"}},
    "keywords": ["key", "terms"],
    "excludeTerms": ["excluded", "terms"]
  }},
  "concepts": ["key concept 1", "key concept 2"]
}}

Important:
- Keep refinements focused and actionable
- Don't over-complicate simple queries
- Maintain the user's original intent
- Return ONLY the JSON object, no other text"""

CONCEPT_PROMPT = """Extract key scientific concepts and terms from this text. \
Return only a JSON array of strings.

Text: {text}"""


@dataclass(frozen=True)
class Refinement:
    """
    Outcome of the refinement step.

    Attributes:
        refined_query: Text sent to the sources (original text on fallback)
        status: "refined", "fallback" (model replied but unusable or failed) or "skipped"
        model: Model id used, None when skipped
    """

    original_query: str
    refined_query: str
    reasoning: str
    status: str
    suggestions: tuple[dict[str, str], ...] = ()
    filters: dict[str, Any] = field(default_factory=dict)
    concepts: tuple[str, ...] = ()
    model: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: float = 0.0
    error: str | None = None

    @property
    def is_refined(self) -> bool:
        return self.status == "refined"

    def search_filters(self) -> SearchFilters:
        return SearchFilters.from_refinement(self.filters)

    def to_intent(self) -> dict[str, Any]:
        intent: dict[str, Any] = {
            "refinedQuery": self.refined_query,
            "reasoning": self.reasoning,
            "suggestions": [dict(s) for s in self.suggestions],
            "filters": dict(self.filters),
            "concepts": list(self.concepts),
            "refinement_status": self.status,
        }
        if self.model:
            intent["refinement_model"] = self.model
            intent["refinement_usage"] = {
                "input_tokens": self.input_tokens,
                "output_tokens": self.output_tokens,
                "estimated_cost": self.estimated_cost,
            }
        if self.error:
            intent["refinement_error"] = self.error
        return intent


def skipped_refinement(query: str) -> Refinement:
    return Refinement(
        original_query=query, refined_query=query, reasoning="refinement disabled", status="skipped"
    )


def fallback_refinement(query: str, model: str | None, error: str | None = None) -> Refinement:
    return Refinement(
        original_query=query,
        refined_query=query,
        reasoning=FALLBACK_REASONING,
        status="fallback",
        model=model,
        error=error,
    )


def _clean_strings(value: Any, limit: int | None = None) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    seen: list[str] = []
    for v in value:
        if isinstance(v, str) and v.strip() and v.strip() not in seen:
            seen.append(v.strip())
    return tuple(seen[:limit] if limit else seen)


def _clean_suggestions(value: Any) -> tuple[dict[str, str], ...]:
    if not isinstance(value, list):
        return ()
    suggestions = []
    for entry in value:
        if isinstance(entry, dict) and isinstance(entry.get("term"), str):
            suggestions.append(
                {
                    "term": entry["term"].strip(),
                    "explanation": str(entry.get("explanation") or "").strip(),
                }
            )
        elif isinstance(entry, str) and entry.strip():
            suggestions.append({"term": entry.strip(), "explanation": ""})
    return tuple(suggestions)


def parse_refinement(query: str, reply: str, model: str | None = None) -> Refinement:
    """
    Validate a refinement reply. Anything that is not a JSON object with a non-empty
    string ``refinedQuery`` yields the fallback refinement.
    """
    payload = extract_json_object(reply or "")
    if payload is None:
        return fallback_refinement(query, model, error="no JSON object in reply")

    refined = payload.get("refinedQuery")
    if not isinstance(refined, str) or not refined.strip():
        return fallback_refinement(query, model, error="refinedQuery missing or empty")

    reasoning = payload.get("reasoning")
    filters = payload.get("filters")
    return Refinement(
        original_query=query,
        refined_query=refined.strip(),
        reasoning=reasoning.strip() if isinstance(reasoning, str) else "",
        status="refined",
        suggestions=_clean_suggestions(payload.get("suggestions")),
        filters=filters if isinstance(filters, dict) else {},
        concepts=_clean_strings(payload.get("concepts"), MAX_CONCEPTS),
        model=model,
    )


def parse_concepts(reply: str) -> list[str]:
    """JSON array of strings from a model reply; [] on any parse or shape failure."""
    values = extract_json_array(reply or "")
    if values is None:
        return []
    return list(_clean_strings(values, MAX_CONCEPTS))


class QueryRefiner:
    """Rewrites a free-text query into a database-friendly form using one model."""

    def __init__(
        self,
        model_id: ModelId,
        client: BaseAIClient,
        models: MultiModelOrchestrator,
        timeout_s: float = 60.0,
    ):
        self.model_id = model_id
        self.client = client
        self.models = models
        self.timeout_s = timeout_s

    def build_prompt(self, query: str, profile: ResearcherProfile | None = None) -> str:
        block = profile.prompt_block() if profile else ""
        return REFINEMENT_PROMPT.format(
            query=query.replace('"', "'"), profile_block=f"\n{block}\n" if block else ""
        )

    async def refine(self, query: str, profile: ResearcherProfile | None = None) -> Refinement:
        response = await self.models.call(
            self.model_id,
            self.client,
            self.build_prompt(query, profile),
            timeout_s=self.timeout_s,
            system=REFINEMENT_SYSTEM_PROMPT,
            max_tokens=REFINEMENT_MAX_TOKENS,
        )

        if response.is_error:
            logger.warning(
                f"Refinement call failed: {response.error.code}",
                extra={
                    "extra_fields": {
                        "model_id": self.model_id.value,
                        "error_code": response.error.code,
                        "error_message": response.error.message,
                    }
                },
            )
            return fallback_refinement(query, self.model_id.value, error=response.error.code)

        refinement = parse_refinement(query, response.text, model=self.model_id.value)
        if not refinement.is_refined:
            logger.warning(
                "Refinement reply was not usable JSON, using original query",
                extra={
                    "extra_fields": {
                        "model_id": self.model_id.value,
                        "reason": refinement.error,
                        "reply_preview": response.text[:200],
                    }
                },
            )

        return replace(
            refinement,
            input_tokens=response.token_usage.prompt_tokens,
            output_tokens=response.token_usage.completion_tokens,
            estimated_cost=response.estimated_cost or 0.0,
        )


class ConceptExtractor:
    """Pulls key scientific concepts out of free text; never raises."""

    def __init__(
        self,
        model_id: ModelId,
        client: BaseAIClient,
        models: MultiModelOrchestrator,
        timeout_s: float = 60.0,
    ):
        self.model_id = model_id
        self.client = client
        self.models = models
        self.timeout_s = timeout_s

    async def extract(self, text: str) -> list[str]:
        if not text or not text.strip():
            return []
        response = await self.models.call(
            self.model_id,
            self.client,
            CONCEPT_PROMPT.format(text=text[:MAX_CONCEPT_TEXT_CHARS]),
            timeout_s=self.timeout_s,
            max_tokens=CONCEPT_MAX_TOKENS,
        )
        if response.is_error:
            logger.warning(
                f"Concept extraction failed: {response.error.code}",
                extra={"extra_fields": {"model_id": self.model_id.value}},
            )
            return []

        concepts = parse_concepts(response.text)
        if not concepts:
            logger.debug(
                "Concept extraction returned no usable array",
                extra={"extra_fields": {"reply_preview": response.text[:200]}},
            )
        return concepts
