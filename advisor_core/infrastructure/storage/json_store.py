import json
import os
import shutil
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional
from uuid import uuid4

from advisor_core.config.settings import settings
from advisor_core.domain.conversation import ConversationStore, Conversation, MessageRecord
from advisor_core.domain.exceptions import BusinessError


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_dt(value: Any) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class JsonConversationStore(ConversationStore):
    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)

    def create_conversation(self, user_id: str, title: str, meta: Optional[Dict[str, Any]] = None) -> Conversation:
        cid = f"c-{uuid4().hex}"
        cdir = self._conv_root / cid
        cdir.mkdir(parents=True, exist_ok=True)
        now = datetime.now(timezone.utc)
        conv = Conversation(
            id=cid,
            user_id=str(user_id),
            title=title or "New Chat",
            created_at=now,
            updated_at=now,
            meta=dict(meta or {}),
        )
        self._write_meta(cdir, conv)
        return conv

    def get_conversation(self, conversation_id: str, user_id: Optional[str] = None) -> Conversation:
        """读取会话；传入 user_id 时校验归属，不属于该用户视为不存在。"""
        cdir = self._conv_root / str(conversation_id)
        meta_path = cdir / "meta.json"
        if not meta_path.exists():
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message="Conversation not found", http_status=404)
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        conv = self._to_conversation(data)
        if user_id is not None and conv.user_id != str(user_id):
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message="Conversation not found", http_status=404)
        return conv

    def list_conversations(self, user_id: str, limit: Optional[int] = None) -> List[Conversation]:
        items: List[Conversation] = []
        for cdir in self._conv_root.glob("*/"):
            meta_path = cdir / "meta.json"
            if not meta_path.exists():
                continue
            try:
                conv = self._to_conversation(json.loads(meta_path.read_text(encoding="utf-8")))
            except (OSError, ValueError, KeyError):
                continue
            if conv.user_id == str(user_id):
                items.append(conv)
        items.sort(key=lambda c: c.updated_at, reverse=True)
        if limit is not None:
            items = items[:limit]
        return items

    def add_message(self, message: MessageRecord) -> None:
        cdir = self._conv_root / message.conversation_id
        msgs_path = cdir / "messages.jsonl"
        try:
            conv = self.get_conversation(message.conversation_id)
            payload = asdict(message)
            payload["created_at"] = _iso(message.created_at)
            line = json.dumps(payload, ensure_ascii=False)
            with msgs_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
            conv.updated_at = datetime.now(timezone.utc)
            self._write_meta(cdir, conv)
        except BusinessError:
            raise
        except (OSError, TypeError, ValueError) as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def list_messages(self, conversation_id: str, limit: Optional[int] = None) -> List[MessageRecord]:
        """按时间顺序返回消息；limit 表示只取最近的 limit 条。"""
        cdir = self._conv_root / str(conversation_id)
        msgs_path = cdir / "messages.jsonl"
        items: List[MessageRecord] = []
        if not msgs_path.exists():
            return items
        for line in msgs_path.read_text(encoding="utf-8").splitlines():
            try:
                items.append(self._to_message(json.loads(line)))
            except (ValueError, KeyError):
                continue
        items.sort(key=lambda m: m.created_at)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def delete_conversation(self, conversation_id: str) -> None:
        cdir = self._conv_root / str(conversation_id)
        if not cdir.exists():
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message="Conversation not found", http_status=404)
        try:
            shutil.rmtree(cdir)
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))

    def update_conversation_title(self, conversation_id: str, title: str) -> None:
        """更新会话标题。"""
        conv = self.get_conversation(conversation_id)
        conv.title = title
        conv.updated_at = datetime.now(timezone.utc)
        cdir = self._conv_root / str(conversation_id)
        self._write_meta(cdir, conv)

    def _write_meta(self, cdir: Path, conv: Conversation) -> None:
        meta_path = cdir / "meta.json"
        tmp_path = cdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": conv.id,
            "user_id": conv.user_id,
            "title": conv.title,
            "created_at": _iso(conv.created_at),
            "updated_at": _iso(conv.updated_at),
            "meta": conv.meta,
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except (OSError, TypeError, ValueError) as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_conversation(data: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=data["id"],
            user_id=str(data["user_id"]),
            title=data.get("title") or "",
            created_at=_parse_dt(data["created_at"]),
            updated_at=_parse_dt(data["updated_at"]),
            meta=data.get("meta") or {},
        )

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> MessageRecord:
        return MessageRecord(
            id=data["id"],
            conversation_id=data["conversation_id"],
            role=data["role"],
            content=data.get("content") or "",
            created_at=_parse_dt(data["created_at"]),
            meta=data.get("meta") or {},
        )
