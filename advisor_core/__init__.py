"""Advisor Core 顶层包。

该包提供理财顾问对话的核心实现，
包括配置加载、领域模型、Provider 适配、回复模式识别、
会话上下文窗口、单轮对话编排、快捷建议与持久化存储等能力。
"""

from advisor_core.agents.advisor_session import AdvisorSession
from advisor_core.agents.shortcut_synthesizer import ShortcutSynthesizer
from advisor_core.domain.advisor import AdvisorResult, ConversationKey, ModeProfile, Turn
from advisor_core.infrastructure.storage.context_store import ConversationContextStore
from advisor_core.modes import classify, resolve

__all__ = [
    "AdvisorSession",
    "ShortcutSynthesizer",
    "AdvisorResult",
    "ConversationKey",
    "ModeProfile",
    "Turn",
    "ConversationContextStore",
    "classify",
    "resolve",
]
