"""
Model and data-source pricing configuration.
All model prices are in USD per million tokens.
"""


class ModelPricing:
    """Pricing information for the supported model backends."""

    ANTHROPIC_PRICING = {
        "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
        "claude-opus-4-20250514": {"input": 15.00, "output": 75.00},
        "claude-3-7-sonnet-20250219": {"input": 3.00, "output": 15.00},
        "claude-3-5-sonnet-20241022": {"input": 3.00, "output": 15.00},
        "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
    }

    OPENAI_PRICING = {
        "gpt-4": {"input": 30.00, "output": 60.00},
        "gpt-4-turbo": {"input": 10.00, "output": 30.00},
        "gpt-4-turbo-preview": {"input": 10.00, "output": 30.00},
        "gpt-4o": {"input": 2.50, "output": 10.00},
        "gpt-4o-mini": {"input": 0.15, "output": 0.60},
        "gpt-4.1": {"input": 2.00, "output": 8.00},
    }

    GEMINI_PRICING = {
        "gemini-1.5-flash": {"input": 0.075, "output": 0.30},
        "gemini-1.5-pro": {"input": 1.25, "output": 5.00},
        "gemini-2.5-flash": {"input": 0.30, "output": 2.50},
        "gemini-2.5-flash-lite": {"input": 0.10, "output": 0.40},
        "gemini-2.5-pro": {"input": 1.25, "output": 10.00},
    }

    # Locally hosted models have no per-token price.
    LOCAL_PRICING = {"input": 0.00, "output": 0.00}

    # Literature/patent APIs used by the engine are free to query.
    DATA_SOURCE_PRICING = {
        "openalex": 0.00,
        "pubmed": 0.00,
        "patents": 0.00,
    }

    @classmethod
    def _pricing_map(cls) -> dict[str, dict[str, dict[str, float]]]:
        return {
            "anthropic": cls.ANTHROPIC_PRICING,
            "openai": cls.OPENAI_PRICING,
            "gemini": cls.GEMINI_PRICING,
        }

    @classmethod
    def get_model_pricing(cls, model_type: str, model_name: str) -> dict[str, float] | None:
        """
        Get pricing information for a specific model.

        Args:
            model_type: Provider name ('anthropic', 'openai', 'gemini', 'ollama')
            model_name: The specific model name

        Returns:
            Dictionary with 'input' and 'output' pricing per million tokens,
            or None if pricing not found
        """
        model_type = model_type.lower()
        if model_type == "ollama":
            return dict(cls.LOCAL_PRICING)

        pricing_dict = cls._pricing_map().get(model_type)
        if not pricing_dict:
            return None
        return pricing_dict.get(model_name)

    @classmethod
    def get_source_cost(cls, source_id: str) -> float:
        return cls.DATA_SOURCE_PRICING.get(source_id, 0.0)

    @classmethod
    def list_all_pricing(
        cls, model_type: str | None = None
    ) -> dict[str, dict[str, dict[str, float]]]:
        all_pricing = cls._pricing_map()
        if model_type:
            model_type = model_type.lower()
            return {model_type: all_pricing.get(model_type, {})}
        return all_pricing
