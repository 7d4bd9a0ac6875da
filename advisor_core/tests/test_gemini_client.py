import asyncio

import httpx
import pytest

from advisor_core.domain.exceptions import (
    ApiError,
    MalformedOutputError,
    NetworkError,
    RateLimitError,
    UpstreamTimeoutError,
    ValidationError,
)
from advisor_core.domain.models import ChatMessage, ChatRequest
from advisor_core.providers.gemini_client import GeminiClient


class SettingsStub:
    gemini_api_key = "g-test-key-123"
    http_timeout = 1.0
    gemini_base_url = "https://generativelanguage.googleapis.com/v1beta"


def _request():
    return ChatRequest(
        provider="gemini",
        model="advisor-chat",
        messages=[
            ChatMessage(role="system", content="be brief"),
            ChatMessage(role="user", content="hi"),
            ChatMessage(role="assistant", content="hello, how can I help?"),
            ChatMessage(role="user", content="tax tips"),
        ],
        temperature=0.4,
        top_p=0.9,
        max_tokens=120,
    )


def _install_client(monkeypatch, resp=None, exc=None, captured=None):
    class Client:
        def __init__(self, *a, **kw):
            if captured is not None:
                captured["client_kwargs"] = kw

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        async def post(self, url, json=None, headers=None, **_):
            if captured is not None:
                captured["url"] = url
                captured["payload"] = json
                captured["headers"] = headers
            if exc is not None:
                raise exc
            return resp

    monkeypatch.setattr("httpx.AsyncClient", Client)


class Resp:
    def __init__(self, status_code=200, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


def test_gemini_payload_and_parse(monkeypatch):
    captured = {}
    data = {
        "candidates": [
            {"content": {"role": "model", "parts": [{"text": "Start "}, {"text": "with 80C."}]}, "finishReason": "STOP"}
        ],
        "usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 4, "totalTokenCount": 14},
    }
    _install_client(monkeypatch, resp=Resp(data=data), captured=captured)
    res = asyncio.run(GeminiClient(SettingsStub()).chat(_request()))

    assert res.choices[0].message.content == "Start with 80C."
    assert res.choices[0].message.role == "assistant"
    assert res.usage.total_tokens == 14
    assert captured["url"].endswith("/models/gemini-1.5-flash:generateContent")
    assert captured["headers"]["x-goog-api-key"] == "g-test-key-123"
    assert captured["client_kwargs"]["timeout"] == 1.0
    payload = captured["payload"]
    assert payload["systemInstruction"] == {"parts": [{"text": "be brief"}]}
    assert [c["role"] for c in payload["contents"]] == ["user", "model", "user"]
    assert payload["contents"][-1]["parts"][0]["text"] == "tax tips"
    assert payload["generationConfig"] == {"maxOutputTokens": 120, "temperature": 0.4, "topP": 0.9}


def test_gemini_missing_key():
    class NoKey(SettingsStub):
        gemini_api_key = None

    with pytest.raises(ValidationError):
        asyncio.run(GeminiClient(NoKey()).chat(_request()))


@pytest.mark.parametrize(
    "status,expected",
    [(429, RateLimitError), (403, ApiError), (500, ApiError)],
)
def test_gemini_http_errors(monkeypatch, status, expected):
    _install_client(monkeypatch, resp=Resp(status_code=status, text="nope"))
    with pytest.raises(expected):
        asyncio.run(GeminiClient(SettingsStub()).chat(_request()))


def test_gemini_timeout_and_network_errors(monkeypatch):
    _install_client(monkeypatch, exc=httpx.ReadTimeout("slow"))
    with pytest.raises(UpstreamTimeoutError):
        asyncio.run(GeminiClient(SettingsStub()).chat(_request()))

    _install_client(monkeypatch, exc=httpx.ConnectError("refused"))
    with pytest.raises(NetworkError):
        asyncio.run(GeminiClient(SettingsStub()).chat(_request()))


@pytest.mark.parametrize(
    "data",
    [
        None,
        {"candidates": []},
        {"promptFeedback": {"blockReason": "SAFETY"}},
        {"candidates": [{"content": {"parts": [{"text": ""}]}}]},
    ],
)
def test_gemini_malformed_output(monkeypatch, data):
    _install_client(monkeypatch, resp=Resp(data=data))
    with pytest.raises(MalformedOutputError):
        asyncio.run(GeminiClient(SettingsStub()).chat(_request()))
