"""Factory for building model clients from configuration and the research registry."""

from config.config import Config
from config.registry import ModelEntry, ResearchRegistry
from models.identifiers import ModelId
from utils.logger import get_logger

from .base_client import BaseAIClient

logger = get_logger(__name__)


def create_model_client(entry: ModelEntry, config: Config) -> BaseAIClient | None:
    """
    Build the client for one registry entry.

    Returns None (with a warning) when a hosted provider has no API key configured.
    """
    if entry.provider == "ollama":
        from .ollama_client import OllamaClient

        return OllamaClient(
            base_url=config.OLLAMA_BASE_URL,
            model_name=entry.model_name,
            timeout_s=config.MODEL_TIMEOUT_S,
        )

    api_key = config.api_key_for(entry.provider)
    if not api_key:
        logger.warning(
            f"No API key for provider '{entry.provider}', model '{entry.id.value}' disabled",
            extra={"extra_fields": {"model_id": entry.id.value, "provider": entry.provider}},
        )
        return None

    if entry.provider == "anthropic":
        from .claude_client import ClaudeClient

        return ClaudeClient(
            api_key=api_key, model_name=entry.model_name, timeout_s=config.MODEL_TIMEOUT_S
        )
    if entry.provider == "openai":
        from .openai_client import OpenAIClient

        return OpenAIClient(
            api_key=api_key, model_name=entry.model_name, timeout_s=config.MODEL_TIMEOUT_S
        )
    if entry.provider == "gemini":
        from .gemini_client import GeminiClient

        return GeminiClient(
            api_key=api_key, model_name=entry.model_name, timeout_s=config.MODEL_TIMEOUT_S
        )

    raise ValueError(f"Unsupported provider '{entry.provider}' for model '{entry.id.value}'")


def create_model_clients(
    config: Config, registry: ResearchRegistry
) -> dict[ModelId, BaseAIClient]:
    clients: dict[ModelId, BaseAIClient] = {}
    for entry in registry.list_models():
        if not entry.enabled:
            continue
        client = create_model_client(entry, config)
        if client is not None:
            clients[entry.id] = client

    logger.info(
        f"Initialized {len(clients)} model clients",
        extra={"extra_fields": {"models": [m.value for m in clients]}},
    )
    return clients
