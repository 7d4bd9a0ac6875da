"""Advisor 领域类型。

- Mode: 单轮回复风格，"probe"（简短追问）或 "final"（完整方案）。
- Turn: 上下文窗口中的一条发言，创建后不可变。
- ConversationKey: (user_id, conversation_id) 组合键，用于定位内存上下文。
- ModeProfile: 某个模式的系统提示词与生成参数。
- AdvisorResult: AdvisorSession 单次调用的结果（成功或降级兜底）。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Optional, Tuple


Mode = Literal["probe", "final"]
MODES: Tuple[str, ...] = ("probe", "final")
DEFAULT_MODE: Mode = "probe"

TurnRole = Literal["user", "assistant"]

DEFAULT_CONVERSATION_ID = "default"


def coerce_mode(value: Any) -> Optional[Mode]:
    """把调用方传入的 mode 规范化；不是合法模式时返回 None。"""

    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if normalized in MODES:
        return normalized  # type: ignore[return-value]
    return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Turn:
    role: TurnRole
    text: str
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if self.role not in ("user", "assistant"):
            raise ValueError(f"Unsupported turn role: {self.role!r}")
        if not isinstance(self.text, str) or not self.text.strip():
            raise ValueError("Turn text must be a non-empty string")


@dataclass(frozen=True)
class ConversationKey:
    """内存上下文的查找键，本身不落库。"""

    user_id: str
    conversation_id: str = DEFAULT_CONVERSATION_ID

    def __post_init__(self) -> None:
        if self.user_id is None or str(self.user_id) == "":
            raise ValueError("ConversationKey requires a user_id")

    @classmethod
    def of(cls, user_id: Any, conversation_id: Any = None) -> "ConversationKey":
        """从外部 ID 构造键，缺省会话统一映射为 "default"。"""

        if user_id is None:
            raise ValueError("ConversationKey requires a user_id")
        cid = DEFAULT_CONVERSATION_ID if conversation_id in (None, "") else str(conversation_id)
        return cls(user_id=str(user_id), conversation_id=cid)


@dataclass(frozen=True)
class ModeProfile:
    """单个模式的行为约定，进程启动时构建，运行期不可变。"""

    instruction_text: str
    max_output_tokens: int
    temperature: float
    top_p: float


@dataclass(frozen=True)
class AdvisorResult:
    """一次 converse 的结果。

    degraded=True 表示上游失败、text 为本地兜底回复；调用方仍需保存并展示，
    但应向用户标记为可能不够准确。
    """

    ok: bool
    text: str
    mode: Mode
    degraded: bool = False
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.degraded
