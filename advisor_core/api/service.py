"""对外 API 服务模块。

提供简化的接口供 HTTP 层调用：发送消息、快捷建议、清空/删除会话、
会话列表、标题修改、消息搜索与统计。

请求校验与会话归属检查在这里完成；Advisor 核心信任这里传入的 key。
上游模型故障不会以异常形式出现在这里，而是 is_error=True 的正常回复。
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from advisor_core.agents.advisor_session import AdvisorSession
from advisor_core.agents.shortcut_synthesizer import ShortcutSynthesizer
from advisor_core.config.settings import settings
from advisor_core.domain.advisor import ConversationKey
from advisor_core.domain.conversation import ConversationStore, MessageRecord
from advisor_core.domain.exceptions import ValidationError
from advisor_core.infrastructure.logging.logger import logger
from advisor_core.infrastructure.storage.context_store import ConversationContextStore
from advisor_core.infrastructure.storage.json_store import JsonConversationStore
from advisor_core.providers import create_provider


MAX_MESSAGE_CHARS = 2000
MAX_SHORTCUT_CONTEXT_CHARS = 500
SHORTCUT_CONTEXT_PREVIEW_CHARS = 200
SHORTCUT_CONTEXT_MESSAGES = 5
TITLE_PREVIEW_CHARS = 50
MAX_TITLE_CHARS = 100
MAX_QUERY_CHARS = 200


def _require_text(value: Optional[str], field: str, max_len: int) -> str:
    text = (value or "").strip()
    if not text or len(text) > max_len:
        raise ValidationError(
            code="VALIDATION_FAILED",
            message=f"{field} must be between 1 and {max_len} characters",
            field=field,
        )
    return text


def _conversation_title(message: str) -> str:
    if len(message) > TITLE_PREVIEW_CHARS:
        return message[:TITLE_PREVIEW_CHARS] + "..."
    return message


class ChatService:
    def __init__(
        self,
        store: ConversationStore,
        session: AdvisorSession,
        synthesizer: ShortcutSynthesizer,
    ):
        self._store = store
        self._session = session
        self._synthesizer = synthesizer

    @property
    def context_store(self) -> ConversationContextStore:
        return self._session.context_store

    async def send_message(
        self,
        user_id: str,
        message: str,
        conversation_id: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> Dict[str, Any]:
        """发送一条消息并取得 Advisor 回复。

        Args:
            user_id: 当前用户ID
            message: 用户输入（1-2000 字符）
            conversation_id: 会话ID（可选，不提供则创建新会话）
            mode: "probe" / "final"（可选，不提供则自动识别）

        Returns:
            包含会话ID、用户消息、助手消息、模式与 is_error 的字典

        Raises:
            ValidationError: 输入不合法
            BusinessError: 会话不存在或不属于该用户
        """
        text = _require_text(message, "message", MAX_MESSAGE_CHARS)
        if conversation_id:
            conv = self._store.get_conversation(conversation_id, user_id)
        else:
            conv = self._store.create_conversation(user_id, _conversation_title(text))

        user_rec = MessageRecord(
            id=f"m-{uuid4().hex}",
            conversation_id=conv.id,
            role="user",
            content=text,
            created_at=datetime.now(timezone.utc),
            meta={},
        )
        self._store.add_message(user_rec)

        result = await self._session.converse(ConversationKey.of(user_id, conv.id), mode, text)

        assistant_meta: Dict[str, Any] = {"mode": result.mode}
        if result.degraded:
            assistant_meta.update(error=True, fallback=True, error_code=result.error)
        assistant_rec = MessageRecord(
            id=f"m-{uuid4().hex}",
            conversation_id=conv.id,
            role="assistant",
            content=result.text,
            created_at=datetime.now(timezone.utc),
            meta=assistant_meta,
        )
        self._store.add_message(assistant_rec)

        return {
            "conversation_id": conv.id,
            "user_message_id": user_rec.id,
            "assistant_message_id": assistant_rec.id,
            "user_text": text,
            "assistant_text": result.text,
            "mode": result.mode,
            "is_error": result.is_error,
            "created_at": assistant_rec.created_at.isoformat(),
        }

    async def get_shortcuts(
        self,
        user_id: str,
        conversation_id: Optional[str] = None,
        context: Optional[str] = None,
    ) -> Dict[str, Any]:
        """生成快捷建议；有会话时使用最近 5 条持久化消息作为上下文。"""
        current_context = (context or "").strip()
        if len(current_context) > MAX_SHORTCUT_CONTEXT_CHARS:
            raise ValidationError(
                code="VALIDATION_FAILED",
                message=f"context must be less than {MAX_SHORTCUT_CONTEXT_CHARS} characters",
                field="context",
            )
        if conversation_id:
            conv = self._store.get_conversation(conversation_id, user_id)
            recent = self._store.list_messages(conv.id, limit=SHORTCUT_CONTEXT_MESSAGES)
            if recent:
                current_context = "\n".join(f"{m.role}: {m.content}" for m in recent)

        shortcuts = await self._synthesizer.suggest(
            ConversationKey.of(user_id, conversation_id),
            current_context,
        )
        return {
            "shortcuts": shortcuts,
            "context": current_context[:SHORTCUT_CONTEXT_PREVIEW_CHARS],
        }

    async def clear_conversation(self, user_id: str, conversation_id: Optional[str] = None) -> None:
        """清空内存上下文（持久化消息保留），排在该会话进行中的轮次之后。"""
        if conversation_id:
            self._store.get_conversation(conversation_id, user_id)
        await self.context_store.clear_locked(ConversationKey.of(user_id, conversation_id))

    async def delete_conversation(self, user_id: str, conversation_id: str) -> None:
        conv = self._store.get_conversation(conversation_id, user_id)
        self._store.delete_conversation(conv.id)
        await self.context_store.clear_locked(ConversationKey.of(user_id, conv.id))
        logger.info(
            "Deleted conversation",
            extra={"extra": {"user_id": user_id, "conversation_id": conv.id}},
        )

    def list_conversations(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        """列出用户的会话（按更新时间倒序），附带最后一条消息与消息数。"""
        if limit < 1 or limit > 100:
            raise ValidationError(code="VALIDATION_FAILED", message="Limit must be between 1 and 100", field="limit")
        items = []
        for c in self._store.list_conversations(user_id, limit=limit):
            msgs = self._store.list_messages(c.id)
            items.append({
                "id": c.id,
                "title": c.title,
                "created_at": c.created_at.isoformat(),
                "updated_at": c.updated_at.isoformat(),
                "last_message": msgs[-1].content if msgs else None,
                "message_count": len(msgs),
            })
        return items

    def get_conversation(self, user_id: str, conversation_id: str, message_limit: int = 50) -> Dict[str, Any]:
        conv = self._store.get_conversation(conversation_id, user_id)
        msgs = self._store.list_messages(conv.id, limit=message_limit)
        return {
            "id": conv.id,
            "title": conv.title,
            "created_at": conv.created_at.isoformat(),
            "updated_at": conv.updated_at.isoformat(),
            "messages": [
                {
                    "id": m.id,
                    "role": m.role,
                    "content": m.content,
                    "created_at": m.created_at.isoformat(),
                    "meta": m.meta,
                }
                for m in msgs
            ],
        }

    def update_conversation_title(self, user_id: str, conversation_id: str, title: str) -> None:
        new_title = _require_text(title, "title", MAX_TITLE_CHARS)
        conv = self._store.get_conversation(conversation_id, user_id)
        self._store.update_conversation_title(conv.id, new_title)

    def search_messages(self, user_id: str, query: str, limit: int = 50) -> List[Dict[str, Any]]:
        """在用户所有会话中做不区分大小写的子串搜索，最新的在前。"""
        needle = _require_text(query, "query", MAX_QUERY_CHARS).lower()
        hits = []
        for c in self._store.list_conversations(user_id):
            for m in self._store.list_messages(c.id):
                if needle in m.content.lower():
                    hits.append((m, c.title))
        hits.sort(key=lambda pair: pair[0].created_at, reverse=True)
        return [
            {
                "id": m.id,
                "conversation_id": m.conversation_id,
                "conversation_title": title,
                "role": m.role,
                "content": m.content,
                "created_at": m.created_at.isoformat(),
            }
            for m, title in hits[:limit]
        ]

    def get_user_stats(self, user_id: str) -> Dict[str, int]:
        convs = self._store.list_conversations(user_id)
        stats = {
            "total_conversations": len(convs),
            "total_messages": 0,
            "user_messages": 0,
            "assistant_messages": 0,
        }
        for c in convs:
            for m in self._store.list_messages(c.id):
                stats["total_messages"] += 1
                if m.role == "user":
                    stats["user_messages"] += 1
                elif m.role == "assistant":
                    stats["assistant_messages"] += 1
        return stats


_service: Optional[ChatService] = None


def get_default_service() -> ChatService:
    """获取默认的 ChatService 实例（单例）。"""
    global _service
    if _service is None:
        provider = create_provider()
        context_store = ConversationContextStore(settings.max_context_turns)
        _service = ChatService(
            store=JsonConversationStore(root=settings.storage_root),
            session=AdvisorSession(context_store, provider),
            synthesizer=ShortcutSynthesizer(provider, context_store=context_store),
        )
    return _service


async def send_message(
    user_id: str,
    message: str,
    conversation_id: Optional[str] = None,
    mode: Optional[str] = None,
) -> Dict[str, Any]:
    return await get_default_service().send_message(user_id, message, conversation_id, mode)


async def get_shortcuts(
    user_id: str,
    conversation_id: Optional[str] = None,
    context: Optional[str] = None,
) -> Dict[str, Any]:
    return await get_default_service().get_shortcuts(user_id, conversation_id, context)


async def clear_conversation(user_id: str, conversation_id: Optional[str] = None) -> None:
    await get_default_service().clear_conversation(user_id, conversation_id)


async def delete_conversation(user_id: str, conversation_id: str) -> None:
    await get_default_service().delete_conversation(user_id, conversation_id)


def list_conversations(user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
    return get_default_service().list_conversations(user_id, limit)


def get_conversation(user_id: str, conversation_id: str, message_limit: int = 50) -> Dict[str, Any]:
    return get_default_service().get_conversation(user_id, conversation_id, message_limit)


def update_conversation_title(user_id: str, conversation_id: str, title: str) -> None:
    get_default_service().update_conversation_title(user_id, conversation_id, title)


def search_messages(user_id: str, query: str, limit: int = 50) -> List[Dict[str, Any]]:
    return get_default_service().search_messages(user_id, query, limit)


def get_user_stats(user_id: str) -> Dict[str, int]:
    return get_default_service().get_user_stats(user_id)
