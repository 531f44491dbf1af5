"""Pydantic request models for FastAPI endpoints."""

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from models.research import QueryConfig


def _dedupe_identifiers(value: Any) -> Any:
    """Drop repeated identifiers (case-insensitive), keeping the first spelling."""
    if not isinstance(value, list):
        return value
    kept = []
    seen: list[str] = []
    for raw in value:
        if isinstance(raw, str):
            key = raw.strip().lower()
            if key in seen:
                continue
            seen.append(key)
        kept.append(raw)
    return kept


class QueryRequestDTO(BaseModel):
    text: str = Field(..., description="Natural-language research question")
    sources: list[str] = Field(..., min_length=1, max_length=3)
    models: list[str] = Field(..., min_length=1, max_length=4)

    @field_validator("sources", "models", mode="before")
    @classmethod
    def dedupe(cls, value: Any) -> Any:
        # runs before the length bounds so repeats do not count against them
        return _dedupe_identifiers(value)

    def to_config(self) -> QueryConfig:
        # Length and identifier checks happen in QueryOrchestrator.validate
        return QueryConfig(text=self.text, sources=self.sources, models=self.models)


class UserContextDTO(BaseModel):
    interests: list[str] = Field(default_factory=list)
    expertise_level: str | None = None


class RefineRequestDTO(BaseModel):
    query: str = Field(..., description="Research question to refine")
    user_context: UserContextDTO | None = None


class NightlyActionDTO(BaseModel):
    action: Literal["trigger", "schedule"] = "trigger"
