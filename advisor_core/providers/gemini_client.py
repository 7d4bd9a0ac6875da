"""Gemini (Generative Language API) Provider 适配器。

- URL: {base_url}/models/{model}:generateContent
- 认证: x-goog-api-key: <api_key>

与 OpenAI 风格接口的差异：
- system 消息不放进 contents，而是合并为 systemInstruction。
- assistant 角色在 contents 中叫 "model"。
- 生成参数放在 generationConfig（maxOutputTokens/temperature/topP）。
"""

from typing import Any, Dict, List

import httpx

from advisor_core.config.settings import settings
from advisor_core.domain.exceptions import (
    ApiError,
    MalformedOutputError,
    NetworkError,
    RateLimitError,
    UpstreamTimeoutError,
    ValidationError,
)
from advisor_core.domain.models import (
    ChatChoice,
    ChatMessage,
    ChatRequest,
    ChatResult,
    ChatUsage,
)
from advisor_core.providers.registry import GEMINI_CONFIG, ModelConfig


_ROLE_MAP = {"user": "user", "assistant": "model"}


class GeminiClient:
    """Gemini Provider 客户端实现。"""

    name = "gemini"

    def __init__(self, cfg=settings):
        self._settings = cfg

    async def chat(self, req: ChatRequest) -> ChatResult:
        api_key = getattr(self._settings, "gemini_api_key", None)
        if not api_key:
            raise ValidationError(code="MISSING_API_KEY", message="GEMINI_API_KEY not set")
        model_cfg = GEMINI_CONFIG.model(req.model)
        payload = self._build_payload(req, model_cfg)
        base = getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    f"{base}/models/{model_cfg.provider_model}:generateContent",
                    json=payload,
                    headers={
                        "x-goog-api-key": api_key,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(code="UPSTREAM_TIMEOUT", message=str(e) or "Gemini request timed out")
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Gemini rate limit or quota exceeded", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedOutputError(code="MALFORMED_OUTPUT", message=f"Gemini returned non-JSON body: {e}")
        return self._parse_response(data, req)

    # ---- 辅助方法 ----

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> Dict[str, Any]:
        system_parts: List[Dict[str, str]] = []
        contents: List[Dict[str, Any]] = []
        for message in req.messages:
            if message.role == "system":
                if message.content:
                    system_parts.append({"text": message.content})
                continue
            contents.append({
                "role": _ROLE_MAP.get(message.role, "user"),
                "parts": [{"text": message.content}],
            })
        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "maxOutputTokens": req.max_tokens or model_cfg.max_tokens,
                "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
                "topP": req.top_p,
            },
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        return payload

    def _parse_response(self, data: Any, req: ChatRequest) -> ChatResult:
        if not isinstance(data, dict):
            raise MalformedOutputError(code="MALFORMED_OUTPUT", message="Gemini response is not an object")
        choices: List[ChatChoice] = []
        for i, cand in enumerate(data.get("candidates") or []):
            content = cand.get("content") or {}
            text = "".join(str(part.get("text") or "") for part in content.get("parts") or [])
            if not text:
                continue
            choices.append(
                ChatChoice(
                    index=cand.get("index", i),
                    message=ChatMessage(role="assistant", content=text),
                    finish_reason=cand.get("finishReason"),
                )
            )
        if not choices:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            raise MalformedOutputError(
                code="MALFORMED_OUTPUT",
                message="Gemini returned no candidate text",
                block_reason=block_reason,
            )
        usage_raw = data.get("usageMetadata") or {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("promptTokenCount", 0),
            completion_tokens=usage_raw.get("candidatesTokenCount", 0),
            total_tokens=usage_raw.get("totalTokenCount", 0),
        )
        return ChatResult(provider="gemini", model=req.model, choices=choices, usage=usage, raw=data)
