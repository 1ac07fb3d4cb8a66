# src/outline_kit/llms/factory.py

import logging

from outline_kit.observability.base import MetricsHook, NoOpMetricsHook

from .base import LLMClient
from .config import LLMConfig

logger = logging.getLogger(__name__)


def create_llm_client(
    config: LLMConfig,
    metrics_hook: MetricsHook = NoOpMetricsHook(),
) -> LLMClient:
    """Create an async LLM client from config.

    Provider SDKs are imported lazily so that installing only one of them
    is enough.

    Args:
        config: LLM configuration specifying provider, model, etc.
        metrics_hook: Optional metrics hook for observability.

    Returns:
        Configured LLMClient implementation.

    Raises:
        ValueError: If provider is unknown or retries are misconfigured.

    Example:
        >>> config = LLMConfig(provider="openai", model="gpt-4o-mini")
        >>> client = create_llm_client(config)
        >>> response = await client.complete(messages=[...])
    """
    if config.max_retries < 1:
        raise ValueError("max_retries must be >= 1")

    logger.debug("Creating %s client for model %s", config.provider, config.model)

    if config.provider == "openai":
        from .openai import OpenAILLMClient

        return OpenAILLMClient(
            api_key=config.api_key,
            model=config.model,
            timeout=config.timeout,
            max_retries=config.max_retries,
            metrics_hook=metrics_hook,
        )

    if config.provider == "anthropic":
        from .anthropic import AnthropicLLMClient

        return AnthropicLLMClient(
            api_key=config.api_key,
            model=config.model,
            timeout=config.timeout,
            max_retries=config.max_retries,
            metrics_hook=metrics_hook,
        )

    raise ValueError(f"Unknown LLM provider: {config.provider}")
