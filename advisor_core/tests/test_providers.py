import pytest

from advisor_core.providers import create_provider
from advisor_core.providers.gemini_client import GeminiClient
from advisor_core.providers.openai_client import OpenAICompatClient
from advisor_core.providers.registry import GEMINI_CONFIG, get_provider_config


def test_create_provider_default(monkeypatch):
    class DummySettings:
        default_provider = "gemini"
        gemini_api_key = "g-test-key-123"
        http_timeout = 1.0
        gemini_base_url = "https://generativelanguage.googleapis.com/v1beta"
        openai_api_key = None

    monkeypatch.setattr("advisor_core.providers.settings", DummySettings())
    provider = create_provider()
    assert isinstance(provider, GeminiClient)


def test_create_provider_explicit(monkeypatch):
    class DummySettings:
        default_provider = "gemini"
        openai_api_key = "sk-test-key-123"
        http_timeout = 1.0
        openai_base_url = "https://api.openai.com/v1"
        gemini_api_key = None

    monkeypatch.setattr("advisor_core.providers.settings", DummySettings())
    provider = create_provider("OpenAI")
    assert isinstance(provider, OpenAICompatClient)


def test_registry_lookup():
    assert get_provider_config("GEMINI") is GEMINI_CONFIG
    assert GEMINI_CONFIG.model("advisor-chat").provider_model == "gemini-1.5-flash"
    # 未登记的逻辑名直接透传为厂商模型 ID
    assert GEMINI_CONFIG.model("gemini-1.5-pro").provider_model == "gemini-1.5-pro"
    with pytest.raises(KeyError):
        get_provider_config("unknown")
