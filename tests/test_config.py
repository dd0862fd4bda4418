"""Tests for settings and the source configuration check."""

import pytest

from snaphealth_api.core.config import LLMProvider, Settings, validate_source_configuration
from snaphealth_api.core.exceptions import ConfigurationError
from snaphealth_api.core.llm import get_llm, get_llm_info


def make_settings(**overrides) -> Settings:
    defaults = {"openai_api_key": "", "google_api_key": "", "google_vision_api_key": ""}
    return Settings(_env_file=None, **{**defaults, **overrides})


def test_vision_requires_llm_key():
    with pytest.raises(ConfigurationError) as exc_info:
        validate_source_configuration(make_settings())

    assert exc_info.value.details == {"missing": ["OPENAI_API_KEY"]}


def test_gemini_key_name():
    with pytest.raises(ConfigurationError) as exc_info:
        validate_source_configuration(make_settings(llm_provider=LLMProvider.GEMINI))

    assert "GOOGLE_API_KEY" in exc_info.value.message


def test_vision_configured():
    validate_source_configuration(make_settings(openai_api_key="sk-test"))


def test_ocr_only_requires_vision_api_key():
    settings = make_settings(vision_enabled=False)

    with pytest.raises(ConfigurationError):
        validate_source_configuration(settings)

    validate_source_configuration(make_settings(vision_enabled=False, google_vision_api_key="k"))


def test_nothing_enabled():
    with pytest.raises(ConfigurationError):
        validate_source_configuration(make_settings(vision_enabled=False, ocr_enabled=False))


def test_active_analysis_method():
    assert make_settings().active_analysis_method == "vision"
    assert make_settings(vision_enabled=False).active_analysis_method == "ocr"
    assert make_settings(vision_enabled=False, ocr_enabled=False).active_analysis_method == "none"


def test_get_llm_requires_key():
    with pytest.raises(ValueError):
        get_llm(make_settings())


def test_get_llm_openai():
    llm = get_llm(make_settings(openai_api_key="sk-test"), temperature=0.7)

    assert llm.temperature == 0.7


def test_llm_info():
    info = get_llm_info(make_settings(llm_provider=LLMProvider.GEMINI, google_api_key="g"))

    assert info == {
        "provider": "gemini",
        "model": "gemini-2.5-flash",
        "configured": True,
        "temperature": 0.2,
    }
