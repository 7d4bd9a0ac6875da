from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Protocol
from datetime import datetime
from .advisor import TurnRole


@dataclass
class Conversation:
    id: str
    user_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    meta: Dict[str, Any]


@dataclass
class MessageRecord:
    id: str
    conversation_id: str
    role: TurnRole
    content: str
    created_at: datetime
    meta: Dict[str, Any]


class ConversationStore(Protocol):
    """持久化会话/消息存储（Advisor 核心之外的协作者）。"""

    def create_conversation(self, user_id: str, title: str, meta: Optional[Dict[str, Any]] = None) -> Conversation:
        ...

    def get_conversation(self, conversation_id: str, user_id: Optional[str] = None) -> Conversation:
        ...

    def list_conversations(self, user_id: str, limit: Optional[int] = None) -> List[Conversation]:
        ...

    def add_message(self, message: MessageRecord) -> None:
        ...

    def list_messages(self, conversation_id: str, limit: Optional[int] = None) -> List[MessageRecord]:
        ...

    def update_conversation_title(self, conversation_id: str, title: str) -> None:
        ...

    def delete_conversation(self, conversation_id: str) -> None:
        ...
