"""Application configuration using Pydantic Settings."""

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from snaphealth_api.core.exceptions import ConfigurationError


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    GEMINI = "gemini"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_timeout_ms: int = 3000  # Server selection timeout; analysis runs without a database
    db_name: str = "snaphealth"

    # LLM Provider Selection
    llm_provider: LLMProvider = LLMProvider.OPENAI

    # OpenAI Configuration
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"

    # Google Gemini Configuration
    google_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"

    # LLM Settings
    llm_temperature: float = 0.2
    llm_max_tokens: int = 2000
    enrichment_temperature: float = 0.7  # Second, more creative pass on low-confidence results

    # Source selection
    vision_enabled: bool = True  # Vision model is the primary source
    ocr_enabled: bool = True  # OCR + nutrition lookup tiers

    # OCR (Google Cloud Vision REST API)
    google_vision_api_key: str = ""
    ocr_confidence_threshold: float = 0.7

    # Nutritionix
    nutritionix_app_id: str = ""
    nutritionix_app_key: str = ""

    # Per-adapter timeouts (seconds)
    vision_timeout: float = 45.0
    enrichment_timeout: float = 30.0
    ocr_timeout: float = 15.0
    nutrition_db_timeout: float = 10.0
    nutrition_race_timeout: float = 5.0  # DB result preferred if it lands inside this window
    llm_nutrition_timeout: float = 20.0
    storage_timeout: float = 10.0
    save_timeout: float = 5.0

    # Global per-request deadline (seconds)
    request_timeout: float = 30.0

    # Runtime
    cache_ttl_seconds: int = 3600
    cache_max_entries: int = 256
    max_concurrent_requests: int = 10
    max_image_bytes: int = 10 * 1024 * 1024
    image_fetch_retries: int = 1

    # App
    debug: bool = False
    app_name: str = "SnapHealth Meal Analysis API"
    api_version: str = "1.0.0"

    @property
    def is_llm_configured(self) -> bool:
        """Check if the selected LLM provider is configured."""
        if self.llm_provider == LLMProvider.OPENAI:
            return bool(self.openai_api_key)
        elif self.llm_provider == LLMProvider.GEMINI:
            return bool(self.google_api_key)
        return False

    @property
    def is_ocr_configured(self) -> bool:
        """Check if OCR credentials are present."""
        return bool(self.google_vision_api_key)

    @property
    def is_nutrition_db_configured(self) -> bool:
        """Check if Nutritionix credentials are present."""
        return bool(self.nutritionix_app_id and self.nutritionix_app_key)

    @property
    def active_analysis_method(self) -> str:
        """Name of the source the pipeline starts with."""
        if self.vision_enabled:
            return "vision"
        if self.ocr_enabled:
            return "ocr"
        return "none"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def validate_source_configuration(settings: Settings) -> None:
    """
    Fail fast when the primary analysis source cannot run.

    Secondary tiers with missing credentials are skipped by the pipeline
    rather than treated as fatal.

    Raises:
        ConfigurationError: If the enabled primary source has no credentials
    """
    if settings.vision_enabled:
        if not settings.is_llm_configured:
            key = (
                "GOOGLE_API_KEY"
                if settings.llm_provider == LLMProvider.GEMINI
                else "OPENAI_API_KEY"
            )
            raise ConfigurationError(
                f"Vision analysis is enabled but {key} is not configured.",
                missing=[key],
            )
        return

    if not settings.ocr_enabled:
        raise ConfigurationError(
            "No analysis source is enabled. Set VISION_ENABLED or OCR_ENABLED.",
            missing=["VISION_ENABLED", "OCR_ENABLED"],
        )

    if not settings.is_ocr_configured:
        raise ConfigurationError(
            "OCR analysis is enabled but GOOGLE_VISION_API_KEY is not configured.",
            missing=["GOOGLE_VISION_API_KEY"],
        )
