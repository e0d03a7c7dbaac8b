import logging
from typing import Optional

from llama_index.llms.openai import OpenAI

from ..gateway import LLMGateway

logger = logging.getLogger(__name__)

PROVIDERS = ("gemini", "openai")

# Cache for LLM models to avoid re-initialization
_llm_cache: dict = {}


def create_llm(llm_settings, temperature: Optional[float] = None) -> LLMGateway:
    """Get or create a gateway-wrapped LLM for the configured provider.

    Args:
        llm_settings: LLMSettings section
        temperature: Override for the configured temperature (the Oracle
            chats warmer than analysis)

    Returns:
        LLMGateway wrapping the provider LLM
    """
    provider = llm_settings.provider
    model_name = llm_settings.model
    temperature = llm_settings.temperature if temperature is None else temperature

    cache_key = f"{provider}_{model_name}_{temperature}"
    if cache_key in _llm_cache:
        logger.debug(f"Using cached LLM model: {model_name}")
        return _llm_cache[cache_key]

    if provider == "gemini":
        from llama_index.llms.gemini import Gemini
        # Gemini API requires model names to be prefixed with "models/"
        gemini_model_name = model_name if model_name.startswith("models/") else f"models/{model_name}"
        model = Gemini(
            model=gemini_model_name,
            api_key=llm_settings.api_key,
            temperature=temperature,
            max_tokens=llm_settings.max_output_tokens,
        )
    elif provider == "openai":
        model = OpenAI(
            model=model_name,
            api_key=llm_settings.api_key,
            temperature=temperature,
            max_tokens=llm_settings.max_output_tokens,
            timeout=llm_settings.request_timeout,
        )
    else:
        raise ValueError(f"Unknown LLM provider: {provider} (expected one of {PROVIDERS})")

    gateway = LLMGateway(model)
    _llm_cache[cache_key] = gateway
    logger.debug(f"Created and cached {provider.upper()} model: {model_name}")
    return gateway


def clear_cache() -> None:
    """Clear the LLM model cache."""
    _llm_cache.clear()
    logger.info("LLM model cache cleared")
