"""LLM factory for multi-provider support."""

from langchain_core.language_models import BaseChatModel

from snaphealth_api.core.config import Settings, LLMProvider, get_settings


def get_llm(
    settings: Settings | None = None,
    *,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> BaseChatModel:
    """
    Get configured LLM instance based on settings.

    Supports OpenAI and Google Gemini providers. Both are vision-capable,
    so the same factory serves image analysis and text estimation.

    Args:
        settings: Application settings (uses default if not provided)
        temperature: Override for the configured temperature
        max_tokens: Override for the configured output token limit

    Returns:
        Configured chat model instance

    Raises:
        ValueError: If provider is not configured or unsupported
    """
    if settings is None:
        settings = get_settings()

    if temperature is None:
        temperature = settings.llm_temperature
    if max_tokens is None:
        max_tokens = settings.llm_max_tokens

    match settings.llm_provider:
        case LLMProvider.GEMINI:
            return _get_gemini(settings, temperature, max_tokens)
        case LLMProvider.OPENAI:
            return _get_openai(settings, temperature, max_tokens)
        case _:
            raise ValueError(f"Unsupported LLM provider: {settings.llm_provider}")


def _get_openai(settings: Settings, temperature: float, max_tokens: int) -> BaseChatModel:
    """Get OpenAI chat model."""
    from langchain_openai import ChatOpenAI

    if not settings.openai_api_key:
        raise ValueError(
            "OpenAI API key not configured. "
            "Set OPENAI_API_KEY in your .env file."
        )

    return ChatOpenAI(
        model=settings.openai_model,
        api_key=settings.openai_api_key,
        temperature=temperature,
        max_tokens=max_tokens,
    )


def _get_gemini(settings: Settings, temperature: float, max_tokens: int) -> BaseChatModel:
    """Get Google Gemini chat model."""
    from langchain_google_genai import ChatGoogleGenerativeAI

    if not settings.google_api_key:
        raise ValueError(
            "Google API key not configured. "
            "Set GOOGLE_API_KEY in your .env file."
        )

    return ChatGoogleGenerativeAI(
        model=settings.gemini_model,
        google_api_key=settings.google_api_key,
        temperature=temperature,
        max_output_tokens=max_tokens,
    )


def get_llm_info(settings: Settings | None = None) -> dict:
    """
    Get information about the configured LLM.

    Args:
        settings: Application settings

    Returns:
        Dict with provider info
    """
    if settings is None:
        settings = get_settings()

    return {
        "provider": settings.llm_provider.value,
        "model": get_model_name(settings),
        "configured": settings.is_llm_configured,
        "temperature": settings.llm_temperature,
    }


def get_model_name(settings: Settings) -> str:
    """Model identifier for the selected provider."""
    if settings.llm_provider == LLMProvider.GEMINI:
        return settings.gemini_model
    return settings.openai_model
