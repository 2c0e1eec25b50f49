"""
Messages and Conversation History

对话消息模型与只追加的会话历史。

核心功能：
- 消息角色分类（system/user/assistant/tool）
- 工具调用请求与工具结果
- Token 估算与 Usage 累计
- 只追加的历史 + 单调游标（turn_start / turn_output_start / context_start）
"""

from __future__ import annotations
import logging
import uuid
from typing import Dict, Any, List, Optional, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .constants import estimate_token_count

logger = logging.getLogger(__name__)


class MessageRole(str, Enum):
    """消息角色类型"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCallRequest:
    """模型发起的一次工具调用"""

    # 调用 ID（由模型分配）
    id: str

    # 工具名称
    name: str

    # 参数文本（通常是 JSON）
    arguments: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass
class ToolCallResult:
    """一次工具调用的文本结果"""

    # 对应的调用 ID
    call_id: str

    # 工具名称
    tool_name: str

    # 结果文本
    content: str

    # 是否为错误结果
    is_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "call_id": self.call_id,
            "tool_name": self.tool_name,
            "content": self.content,
            "is_error": self.is_error,
        }


@dataclass
class Usage:
    """模型调用的 Token 使用量"""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def add(self, other: Optional["Usage"]) -> "Usage":
        """累加另一次调用的使用量（原地修改并返回自身）"""
        if other is not None:
            self.prompt_tokens += other.prompt_tokens
            self.completion_tokens += other.completion_tokens
        return self

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class Message:
    """
    单条消息对象

    封装消息的所有元信息
    """

    # 消息角色
    role: MessageRole

    # 文本内容
    content: str = ""

    # 附带的多媒体内容（图片等，原样透传给模型适配器）
    media: List[Dict[str, Any]] = field(default_factory=list)

    # 工具调用请求（仅 assistant 角色）
    tool_calls: List[ToolCallRequest] = field(default_factory=list)

    # 工具结果（仅 tool 角色）
    tool_results: List[ToolCallResult] = field(default_factory=list)

    # 消息 ID
    message_id: str = ""

    # 时间戳
    timestamp: datetime = field(default_factory=datetime.now)

    # 元数据
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.role, MessageRole):
            self.role = MessageRole(self.role)
        if not self.message_id:
            self.message_id = f"{self.role.value}_{uuid.uuid4().hex[:12]}"

    # ============================================
    # 构造帮助方法
    # ============================================

    @classmethod
    def system(cls, content: str, **metadata) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content, metadata=metadata)

    @classmethod
    def user(cls, content: str, media: Optional[List[Dict[str, Any]]] = None) -> "Message":
        return cls(role=MessageRole.USER, content=content, media=list(media or []))

    @classmethod
    def assistant(
        cls,
        content: str = "",
        tool_calls: Optional[List[ToolCallRequest]] = None,
    ) -> "Message":
        return cls(
            role=MessageRole.ASSISTANT,
            content=content,
            tool_calls=list(tool_calls or []),
        )

    @classmethod
    def tool(cls, result: ToolCallResult) -> "Message":
        return cls(
            role=MessageRole.TOOL,
            content=result.content,
            tool_results=[result],
        )

    # ============================================
    # 属性
    # ============================================

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def token_count(self) -> int:
        """估算消息的 Token 数量（内容 + 工具调用 + 工具结果）"""
        parts = [self.content]
        for call in self.tool_calls:
            parts.append(call.name)
            parts.append(call.arguments)
        for result in self.tool_results:
            if result.content != self.content:
                parts.append(result.content)
        return estimate_token_count("".join(parts))

    # ============================================
    # 序列化（供会话存储使用）
    # ============================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "media": self.media,
            "tool_calls": [call.to_dict() for call in self.tool_calls],
            "tool_results": [result.to_dict() for result in self.tool_results],
            "message_id": self.message_id,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        timestamp = data.get("timestamp")
        return cls(
            role=MessageRole(data["role"]),
            content=data.get("content", ""),
            media=list(data.get("media", [])),
            tool_calls=[ToolCallRequest(**call) for call in data.get("tool_calls", [])],
            tool_results=[ToolCallResult(**result) for result in data.get("tool_results", [])],
            message_id=data.get("message_id", ""),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(),
            metadata=dict(data.get("metadata", {})),
        )


def count_tokens(messages: Iterable[Message]) -> int:
    """估算一组消息的总 Token 数"""
    return sum(message.token_count for message in messages)


class ConversationHistory:
    """
    会话历史

    只追加的消息列表，附带三个单调不减的游标：
    - turn_start：当前 turn 第一条新输入消息的位置
    - turn_output_start：当前 turn 第一条输出消息的位置
    - context_start：压缩后，提示视图从此处开始读取原始消息

    压缩不会删除原始消息，只会推进 context_start 并记录摘要消息。
    """

    def __init__(self, messages: Optional[Iterable[Message]] = None):
        self._messages: List[Message] = list(messages or [])
        self.turn_start = len(self._messages)
        self.turn_output_start = len(self._messages)
        self.context_start = 0
        self.summary: Optional[Message] = None

    def begin_turn(self, new_messages: Iterable[Message]):
        """开始新的 turn：追加输入消息并移动游标"""
        self.turn_start = len(self._messages)
        self._messages.extend(new_messages)
        self.turn_output_start = len(self._messages)

    def append(self, message: Message):
        self._messages.append(message)

    @property
    def messages(self) -> List[Message]:
        """原始消息快照"""
        return list(self._messages)

    def current_turn(self) -> List[Message]:
        """当前 turn 的全部消息（输入 + 输出）"""
        return self._messages[self.turn_start:]

    def turn_output(self) -> List[Message]:
        """当前 turn 产生的输出消息"""
        return self._messages[self.turn_output_start:]

    def prompt_view(self) -> List[Message]:
        """发送给模型的视图：摘要 + context_start 之后的原始消息"""
        view = self._messages[self.context_start:]
        if self.summary is not None:
            return [self.summary] + view
        return list(view)

    def compact(self, view_split_index: int, summary: Message):
        """
        应用一次压缩

        Args:
            view_split_index: prompt_view() 坐标下的分割位置，之前的消息被摘要替代
            summary: 摘要消息
        """
        offset = 1 if self.summary is not None else 0
        advance = max(0, view_split_index - offset)
        self.context_start = min(len(self._messages), self.context_start + advance)
        self.summary = summary
        logger.debug(
            f"历史已压缩：context_start={self.context_start}, total={len(self._messages)}"
        )

    def clear(self):
        """清空历史（仅用于 Agent.reset）"""
        self._messages = []
        self.turn_start = 0
        self.turn_output_start = 0
        self.context_start = 0
        self.summary = None

    def load(self, messages: Iterable[Message]):
        """从存储恢复历史（仅在 turn 边界调用）"""
        self.clear()
        self._messages = list(messages)
        self.turn_start = len(self._messages)
        self.turn_output_start = len(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages))

    def __repr__(self) -> str:
        return (
            f"ConversationHistory(messages={len(self._messages)}, "
            f"turn_start={self.turn_start}, context_start={self.context_start})"
        )
