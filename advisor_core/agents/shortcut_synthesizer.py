"""快捷建议生成。

让模型根据最近的上下文给出 4-6 条按钮式建议（每条 2-5 个词）。
模型输出不可信：解析失败、不是列表、清洗后为空或调用异常时，
按上下文关键词回退到固定建议集，保证总能返回非空列表。
"""

import ast
import asyncio
import json
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from advisor_core.config.settings import settings
from advisor_core.domain.advisor import ConversationKey
from advisor_core.domain.models import ChatMessage, ChatRequest
from advisor_core.infrastructure.logging.logger import logger
from advisor_core.infrastructure.storage.context_store import ConversationContextStore
from advisor_core.prompts import load_system_prompt
from advisor_core.providers.base import ProviderClient


MAX_SHORTCUTS = 6
MAX_SHORTCUT_WORDS = 6
SHORTCUT_MAX_TOKENS = 80
SHORTCUT_TEMPERATURE = 0.7

DEFAULT_SHORTCUTS: Tuple[str, ...] = (
    "Monthly budgeting tips",
    "Best savings options",
    "Investment for beginners",
    "Tax-saving schemes",
    "Emergency fund planning",
    "Home loan guidance",
)

# 按顺序匹配，命中第一个即返回
KEYWORD_SHORTCUTS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("invest", ("Mutual funds guide", "PPF vs ELSS", "SIP planning", "Risk assessment")),
    ("loan", ("Home loan EMI", "Personal loan options", "Loan eligibility", "Interest rates")),
    ("tax", ("Section 80C options", "Tax planning tips", "ELSS funds", "HRA benefits")),
)

SHORTCUT_PROMPT = """Context:
{context}

Task:
Generate 4-6 relevant, actionable quick suggestions for an Indian personal finance chat.
Keep each suggestion 2-5 words, concise, and specific.
Return JSON array ONLY, e.g. ["Mutual funds guide","PPF vs ELSS"].
"""

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def fallback_shortcuts(context_text: Optional[str] = None) -> List[str]:
    """基于关键词的确定性兜底建议。"""

    lowered = (context_text or "").lower()
    for keyword, suggestions in KEYWORD_SHORTCUTS:
        if keyword in lowered:
            return list(suggestions)
    return list(DEFAULT_SHORTCUTS)


def parse_shortcuts(raw: Optional[str]) -> List[str]:
    """把模型输出解析为清洗后的建议列表；无法解析时返回空列表。"""

    text = _FENCE_RE.sub("", (raw or "").strip()).strip()
    if not text:
        return []
    try:
        parsed: Any = json.loads(text)
    except json.JSONDecodeError:
        try:
            parsed = ast.literal_eval(text)
        except (ValueError, SyntaxError, MemoryError, RecursionError):
            return []
    if not isinstance(parsed, (list, tuple)):
        return []
    cleaned: List[str] = []
    for item in parsed:
        s = str(item).strip()
        if not s or len(s.split()) > MAX_SHORTCUT_WORDS:
            continue
        cleaned.append(s)
    return cleaned[:MAX_SHORTCUTS]


def render_context(turns: Sequence[Any]) -> str:
    return "\n".join(f"{t.role}: {t.text}" for t in turns)


class ShortcutSynthesizer:
    def __init__(
        self,
        provider_client: ProviderClient,
        *,
        context_store: Optional[ConversationContextStore] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._provider_client = provider_client
        self._context_store = context_store
        self._provider = provider or getattr(provider_client, "name", None) or settings.default_provider
        self._model = model or getattr(settings, "default_model", "advisor-chat")
        self._timeout = timeout if timeout is not None else settings.http_timeout

    async def suggest(self, key: Optional[ConversationKey], context_text: Optional[str] = None) -> List[str]:
        """返回 1-6 条建议，从不抛出异常。"""

        log_ctx: Dict[str, Any] = {"trace_id": f"sc-{uuid4().hex}"}
        if key is not None:
            log_ctx.update(user_id=key.user_id, conversation_id=key.conversation_id)

        context = (context_text or "").strip()
        if not context and key is not None and self._context_store is not None:
            context = render_context(self._context_store.get(key))

        req = ChatRequest(
            provider=self._provider,
            model=self._model,
            messages=[
                ChatMessage(role="system", content=load_system_prompt("shortcuts_system")),
                ChatMessage(role="user", content=SHORTCUT_PROMPT.format(context=context or "(none)")),
            ],
            temperature=SHORTCUT_TEMPERATURE,
            max_tokens=SHORTCUT_MAX_TOKENS,
        )
        try:
            result = await asyncio.wait_for(self._provider_client.chat(req), timeout=self._timeout)
            shortcuts = parse_shortcuts(result.first_text())
        except Exception as e:
            logger.warning(
                "Shortcut generation failed, using fallback",
                extra={"extra": {**log_ctx, "error": repr(e)}},
            )
            return fallback_shortcuts(context)

        if not shortcuts:
            logger.info("Unusable shortcut output, using fallback", extra={"extra": log_ctx})
            return fallback_shortcuts(context)
        logger.info("Generated shortcuts", extra={"extra": {**log_ctx, "count": len(shortcuts)}})
        return shortcuts
