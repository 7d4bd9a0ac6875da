"""Advisor 单轮对话编排。

一次 converse 的流程：
1. 未指定 mode 时由 classifier 推断。
2. 从配置表取得该模式的系统提示词与生成参数。
3. 读取会话上下文窗口，拼上本轮用户输入，组装 ChatRequest。
4. 调用 Provider（带超时）。
5. 成功：写回 user/assistant 两条 Turn，返回正常结果。
6. 失败：只写回 user Turn，返回 degraded=True 的兜底回复，从不抛出。

同一 ConversationKey 的整轮对话在 per-key 锁内串行执行；
不同会话之间互不阻塞。本层不做重试。
"""

import asyncio
import logging
import random
import time
from typing import Any, Callable, Dict, Optional, Sequence
from uuid import uuid4

from advisor_core.config.settings import settings
from advisor_core.domain.advisor import AdvisorResult, ConversationKey, Mode, Turn, coerce_mode
from advisor_core.domain.exceptions import BusinessError, MalformedOutputError
from advisor_core.domain.models import ChatMessage, ChatRequest, ChatResult
from advisor_core.infrastructure.logging.logger import logger
from advisor_core.infrastructure.storage.context_store import ConversationContextStore
from advisor_core.modes.classifier import classify
from advisor_core.modes.profiles import resolve
from advisor_core.providers.base import ProviderClient


FALLBACK_RESPONSES = (
    "I'm here to help with your financial questions! Due to technical issues, I might not have "
    "the most up-to-date information right now, but I can still provide general guidance.",
    "Let me help you with that financial question. While I'm experiencing some connectivity issues, "
    "I can share some general advice on Indian financial planning.",
    "I'm your financial advisor and I want to help! Though I'm having some technical difficulties, "
    "I can still discuss budgeting, savings, and investment basics with you.",
)


class AdvisorSession:
    def __init__(
        self,
        context_store: ConversationContextStore,
        provider_client: ProviderClient,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        chooser: Callable[[Sequence[str]], str] = random.choice,
    ):
        self._context_store = context_store
        self._provider_client = provider_client
        self._provider = provider or getattr(provider_client, "name", None) or settings.default_provider
        self._model = model or getattr(settings, "default_model", "advisor-chat")
        self._timeout = timeout if timeout is not None else settings.http_timeout
        self._chooser = chooser

    @property
    def context_store(self) -> ConversationContextStore:
        return self._context_store

    async def converse(
        self,
        key: ConversationKey,
        mode: Optional[Any],
        utterance: str,
    ) -> AdvisorResult:
        """执行一轮对话。

        Args:
            key: 会话键（调用方已校验会话归属）
            mode: "probe" / "final"；None 或非法值时自动识别
            utterance: 用户本轮输入

        Returns:
            AdvisorResult；上游失败时 degraded=True，不抛异常
        """
        if key is None:
            raise ValueError("ConversationKey is required")
        if not isinstance(utterance, str) or not utterance.strip():
            raise ValueError("utterance must be a non-empty string")
        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "user_id": key.user_id,
            "conversation_id": key.conversation_id,
        }

        effective_mode: Mode = coerce_mode(mode) or classify(utterance)
        profile = resolve(effective_mode)
        log_ctx["mode"] = effective_mode

        async with self._context_store.lock(key):
            window = self._context_store.get(key)
            chat_messages = [ChatMessage(role="system", content=profile.instruction_text)]
            for turn in window:
                chat_messages.append(ChatMessage(role=turn.role, content=turn.text))
            chat_messages.append(ChatMessage(role="user", content=utterance))

            req = ChatRequest(
                provider=self._provider,
                model=self._model,
                messages=chat_messages,
                temperature=profile.temperature,
                top_p=profile.top_p,
                max_tokens=profile.max_output_tokens,
            )
            self._log(
                logging.INFO,
                "Calling provider",
                log_ctx,
                provider=self._provider,
                model=self._model,
                message_count=len(chat_messages),
                context_turns=len(window),
            )

            try:
                result = await asyncio.wait_for(self._provider_client.chat(req), timeout=self._timeout)
                response_text = self._extract_text(result)
            except asyncio.TimeoutError:
                return self._degrade(key, effective_mode, utterance, "UPSTREAM_TIMEOUT", log_ctx, start_time)
            except BusinessError as e:
                return self._degrade(key, effective_mode, utterance, e.code, log_ctx, start_time, error=e.message)
            except Exception as e:
                return self._degrade(key, effective_mode, utterance, "UPSTREAM_ERROR", log_ctx, start_time, error=repr(e))

            self._context_store.append(key, [
                Turn(role="user", text=utterance),
                Turn(role="assistant", text=response_text),
            ])

        if result.usage:
            self._log(
                logging.INFO,
                "Token usage",
                log_ctx,
                prompt_tokens=result.usage.prompt_tokens,
                completion_tokens=result.usage.completion_tokens,
                total_tokens=result.usage.total_tokens,
            )
        self._log(
            logging.INFO,
            "Completed advisor turn",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            degraded=False,
        )
        return AdvisorResult(ok=True, text=response_text, mode=effective_mode, degraded=False)

    def fallback_text(self) -> str:
        return self._chooser(FALLBACK_RESPONSES)

    @staticmethod
    def _extract_text(result: ChatResult) -> str:
        text = result.first_text() if result is not None else ""
        if not text:
            raise MalformedOutputError(code="MALFORMED_OUTPUT", message="Provider returned an empty response")
        return text

    def _degrade(
        self,
        key: ConversationKey,
        mode: Mode,
        utterance: str,
        code: str,
        log_ctx: Dict[str, Any],
        start_time: float,
        error: Optional[str] = None,
    ) -> AdvisorResult:
        self._log(
            logging.ERROR,
            "Provider call failed, using fallback response",
            log_ctx,
            error_code=code,
            error=error,
            elapsed_seconds=round(time.time() - start_time, 2),
        )
        self._context_store.append(key, [Turn(role="user", text=utterance)])
        return AdvisorResult(
            ok=False,
            text=self.fallback_text(),
            mode=mode,
            degraded=True,
            error=code,
        )

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
