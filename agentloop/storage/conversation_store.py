"""
Conversation Storage

会话消息的持久化接口与两种实现。

- InMemoryConversationStore：进程内字典
- FileConversationStore：每个会话一个 JSON 文件

只在 turn 边界被调用（run 开始时加载、run 完成时保存）。
"""

from __future__ import annotations
import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from ..messages import Message

logger = logging.getLogger(__name__)


class ConversationStore(ABC):
    """会话存储接口"""

    @abstractmethod
    def store(self, conversation_id: str, messages: List[Message]):
        """保存会话的全部消息（覆盖）"""

    @abstractmethod
    def load(self, conversation_id: str) -> List[Message]:
        """加载会话消息；不存在时返回空列表"""

    def delete(self, conversation_id: str) -> bool:
        return False

    def list_conversations(self) -> List[str]:
        return []


class InMemoryConversationStore(ConversationStore):
    """进程内会话存储"""

    def __init__(self):
        self._conversations: Dict[str, List[Message]] = {}
        self._lock = threading.Lock()

    def store(self, conversation_id: str, messages: List[Message]):
        with self._lock:
            self._conversations[conversation_id] = list(messages)
        logger.debug(f"会话已保存：{conversation_id} ({len(messages)} 条消息)")

    def load(self, conversation_id: str) -> List[Message]:
        with self._lock:
            return list(self._conversations.get(conversation_id, []))

    def delete(self, conversation_id: str) -> bool:
        with self._lock:
            return self._conversations.pop(conversation_id, None) is not None

    def list_conversations(self) -> List[str]:
        with self._lock:
            return list(self._conversations.keys())


class FileConversationStore(ConversationStore):
    """
    文件会话存储

    每个会话保存为 <root>/<conversation_id>.json
    """

    _UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")

    def __init__(self, root: Path):
        """
        初始化文件存储

        Args:
            root: 存储目录（不存在时自动创建）
        """
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"FileConversationStore 初始化：{self.root}")

    def _path_for(self, conversation_id: str) -> Path:
        safe_id = self._UNSAFE_CHARS.sub("_", conversation_id)
        if not safe_id:
            raise ValueError("conversation_id must not be empty")
        return self.root / f"{safe_id}.json"

    def store(self, conversation_id: str, messages: List[Message]):
        path = self._path_for(conversation_id)
        payload = {
            "conversation_id": conversation_id,
            "messages": [message.to_dict() for message in messages],
        }

        # 先写临时文件再替换，避免读到半写入的文件
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(path)

        logger.info(f"会话已保存：{path} ({len(messages)} 条消息)")

    def load(self, conversation_id: str) -> List[Message]:
        path = self._path_for(conversation_id)
        if not path.exists():
            logger.debug(f"会话不存在：{conversation_id}")
            return []

        data = json.loads(path.read_text(encoding="utf-8"))
        messages = [Message.from_dict(item) for item in data.get("messages", [])]

        logger.info(f"会话已加载：{conversation_id} ({len(messages)} 条消息)")
        return messages

    def delete(self, conversation_id: str) -> bool:
        path = self._path_for(conversation_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list_conversations(self) -> List[str]:
        ids: List[str] = []
        for path in sorted(self.root.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"跳过无法读取的会话文件：{path} - {e}")
                continue
            ids.append(data.get("conversation_id", path.stem))
        return ids


def create_conversation_store(path: Optional[str] = None) -> ConversationStore:
    """path 为空时返回内存存储，否则返回文件存储"""
    if path:
        return FileConversationStore(Path(path))
    return InMemoryConversationStore()
