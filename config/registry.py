from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from models.identifiers import ModelId, SourceId


@dataclass(frozen=True)
class SourceEntry:
    id: SourceId
    name: str
    enabled: bool = True
    nightly_max_results: int = 10
    open_access_only: bool = False


@dataclass(frozen=True)
class ModelEntry:
    id: ModelId
    provider: str
    model_name: str
    display_name: str
    local: bool = False
    enabled: bool = True


@dataclass
class ResearchRegistry:
    """Configured data sources and model backends, loaded from YAML."""

    _sources: dict[SourceId, SourceEntry]
    _models: dict[ModelId, ModelEntry]

    @classmethod
    def from_yaml(cls, path: str | None = None) -> "ResearchRegistry":
        registry_path = (
            Path(path) if path else Path(__file__).resolve().parent / "research_registry.yaml"
        )
        if not registry_path.exists():
            raise ValueError(f"Research registry not found at {registry_path}")

        data = yaml.safe_load(registry_path.read_text(encoding="utf-8"))
        if not data or "sources" not in data or "models" not in data:
            raise ValueError("Invalid research registry: missing sources or models")

        sources: dict[SourceId, SourceEntry] = {}
        for entry in data["sources"]:
            if "id" not in entry or "name" not in entry:
                raise ValueError(f"Source entry missing id/name: {entry}")
            source_id = SourceId(entry["id"])
            sources[source_id] = SourceEntry(
                id=source_id,
                name=entry["name"],
                enabled=bool(entry.get("enabled", True)),
                nightly_max_results=int(entry.get("nightly_max_results", 10)),
                open_access_only=bool(entry.get("open_access_only", False)),
            )

        models: dict[ModelId, ModelEntry] = {}
        for entry in data["models"]:
            required = ["id", "provider", "model_name"]
            if any(key not in entry for key in required):
                raise ValueError(f"Model entry missing required fields: {entry}")
            model_id = ModelId(entry["id"])
            models[model_id] = ModelEntry(
                id=model_id,
                provider=str(entry["provider"]).lower(),
                model_name=entry["model_name"],
                display_name=entry.get("display_name", entry["model_name"]),
                local=bool(entry.get("local", False)),
                enabled=bool(entry.get("enabled", True)),
            )

        return cls(_sources=sources, _models=models)

    def source(self, source_id: SourceId) -> SourceEntry | None:
        return self._sources.get(source_id)

    def model(self, model_id: ModelId) -> ModelEntry | None:
        return self._models.get(model_id)

    def enabled_sources(self) -> list[SourceEntry]:
        return [s for s in self._sources.values() if s.enabled]

    def list_models(self) -> list[ModelEntry]:
        return list(self._models.values())

    def with_model_overrides(self, overrides: dict[str, str | None]) -> "ResearchRegistry":
        """Return a copy whose model names are replaced where an override is set."""
        models = dict(self._models)
        for raw_id, model_name in overrides.items():
            if not model_name:
                continue
            model_id = ModelId(raw_id)
            current = models.get(model_id)
            if current is None:
                continue
            models[model_id] = ModelEntry(
                id=current.id,
                provider=current.provider,
                model_name=model_name,
                display_name=current.display_name,
                local=current.local,
                enabled=current.enabled,
            )
        return ResearchRegistry(_sources=dict(self._sources), _models=models)
