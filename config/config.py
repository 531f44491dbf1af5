import os
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv


class SynthesisMode(Enum):
    """How model synthesis is laid out over the collected source results."""

    COMBINED = "combined"  # one response per model over all sources
    MATRIX = "matrix"  # one response per (source, model) pair


class CacheBackend(Enum):
    MEMORY = "memory"
    REDIS = "redis"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Configuration management for the application."""

    def __init__(self, load_env_file: bool = True):
        """Initialize configuration with environment variables."""
        if load_env_file:
            env_path = Path(__file__).parent.parent / ".env"
            if env_path.exists():
                load_dotenv(dotenv_path=env_path)

        # Model providers
        self.ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
        self.OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
        self.GOOGLE_GEMINI_API_KEY = os.getenv("GOOGLE_GEMINI_API_KEY")
        self.OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
        self.MODEL_NAME_OVERRIDES = {
            "claude": os.getenv("DEFAULT_CLAUDE_MODEL"),
            "gpt4": os.getenv("DEFAULT_GPT4_MODEL"),
            "gemini": os.getenv("DEFAULT_GEMINI_MODEL"),
            "ollama": os.getenv("OLLAMA_MODEL"),
        }

        # Data sources (credentials optional)
        self.OPENALEX_API_KEY = os.getenv("OPENALEX_API_KEY")
        self.OPENALEX_MAILTO = os.getenv("OPENALEX_MAILTO", "research@example.org")
        self.PUBMED_API_KEY = os.getenv("PUBMED_API_KEY")
        self.PATENTSVIEW_API_KEY = os.getenv("PATENTSVIEW_API_KEY")
        self.PATENTSVIEW_BASE_URL = os.getenv(
            "PATENTSVIEW_BASE_URL", "https://api.patentsview.org/patents/query"
        )

        # Storage
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+pysqlite:///./research_intel.db")
        self.REDIS_URL = os.getenv("REDIS_URL")
        default_backend = CacheBackend.REDIS.value if self.REDIS_URL else CacheBackend.MEMORY.value
        self.CACHE_BACKEND = os.getenv("CACHE_BACKEND", default_backend).lower()

        # Orchestration
        self.REFINEMENT_MODEL = os.getenv("REFINEMENT_MODEL", "claude").strip().lower() or None
        self.CONCEPT_MODEL = os.getenv("CONCEPT_MODEL", "claude").strip().lower() or None
        self.SOURCE_TIMEOUT_S = _float_env("SOURCE_TIMEOUT_S", 20.0)
        self.MODEL_TIMEOUT_S = _float_env("MODEL_TIMEOUT_S", 120.0)
        self.MODEL_MAX_WORKERS = _int_env("MODEL_MAX_WORKERS", 16)
        self.SOURCE_MAX_RESULTS = _int_env("SOURCE_MAX_RESULTS", 25)
        self.FANOUT_MAX_CONCURRENCY = _int_env("FANOUT_MAX_CONCURRENCY", 4)
        self.MAX_CONCURRENT_QUERIES = _int_env("MAX_CONCURRENT_QUERIES", 8)
        self.SYNTHESIS_MODE = os.getenv("SYNTHESIS_MODE", SynthesisMode.COMBINED.value).lower()
        self.SOURCE_MAX_RETRIES = _int_env("SOURCE_MAX_RETRIES", 2)
        self.SOURCE_RETRY_BACKOFF_S = _float_env("SOURCE_RETRY_BACKOFF_S", 0.5)

        # Rate limiting
        self.RATE_LIMIT_PER_HOUR = _int_env("RATE_LIMIT_PER_HOUR", 20)
        self.RATE_LIMIT_WINDOW_SECONDS = _int_env("RATE_LIMIT_WINDOW_SECONDS", 3600)
        self.RATE_LIMIT_PER_DAY = _int_env("RATE_LIMIT_PER_DAY", 100)

        # Runtime
        self.APP_ENV = os.getenv("APP_ENV", "production").lower()
        self.API_KEYS = os.getenv("API_KEYS", "")
        self.NIGHTLY_CRON = os.getenv("NIGHTLY_CRON", "0 2 * * *")
        self.NIGHTLY_AUTOSCHEDULE = _bool_env("NIGHTLY_AUTOSCHEDULE", False)
        self.RESEARCHER_PROFILES_PATH = os.getenv("RESEARCHER_PROFILES_PATH")
        self.REGISTRY_PATH = os.getenv("RESEARCH_REGISTRY_PATH")

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

    @property
    def synthesis_mode(self) -> SynthesisMode:
        return SynthesisMode(self.SYNTHESIS_MODE)

    @property
    def cache_backend(self) -> CacheBackend:
        return CacheBackend(self.CACHE_BACKEND)

    def validate(self) -> list[str]:
        """
        Check the configuration for problems.

        Returns:
            list[str]: Human-readable problems; empty when the configuration is usable.
            Missing provider keys are reported but do not stop startup, since the
            corresponding model is simply left out of the enabled set.
        """
        problems: list[str] = []

        if self.SYNTHESIS_MODE not in {m.value for m in SynthesisMode}:
            problems.append(
                f"Unknown SYNTHESIS_MODE '{self.SYNTHESIS_MODE}'. "
                f"Must be one of: {', '.join(m.value for m in SynthesisMode)}"
            )
        if self.CACHE_BACKEND not in {b.value for b in CacheBackend}:
            problems.append(f"Unknown CACHE_BACKEND '{self.CACHE_BACKEND}'")
        if self.CACHE_BACKEND == CacheBackend.REDIS.value and not self.REDIS_URL:
            problems.append("CACHE_BACKEND=redis requires REDIS_URL")
        if not self.API_KEYS:
            problems.append("API_KEYS is not set; HTTP endpoints will reject every request")
        if not any([self.ANTHROPIC_API_KEY, self.OPENAI_API_KEY, self.GOOGLE_GEMINI_API_KEY]):
            problems.append("No hosted model API key configured; only the local model can run")
        for name in ("SOURCE_TIMEOUT_S", "MODEL_TIMEOUT_S"):
            if getattr(self, name) <= 0:
                problems.append(f"{name} must be positive")
        for name in (
            "FANOUT_MAX_CONCURRENCY",
            "MAX_CONCURRENT_QUERIES",
            "MODEL_MAX_WORKERS",
            "RATE_LIMIT_PER_HOUR",
        ):
            if getattr(self, name) < 1:
                problems.append(f"{name} must be at least 1")

        return problems

    def api_key_for(self, provider: str) -> str | None:
        return {
            "anthropic": self.ANTHROPIC_API_KEY,
            "openai": self.OPENAI_API_KEY,
            "gemini": self.GOOGLE_GEMINI_API_KEY,
        }.get(provider)
