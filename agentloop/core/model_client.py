"""
Model Client Boundary

模型调用接口。核心循环只依赖这里定义的类型，具体的 SDK 适配
位于 agentloop.providers。

核心功能：
- Prompt：系统提示 + 消息 + 工具 Schema
- ModelResponse：完整响应（assistant 消息 + usage）
- ModelChunk / ToolCallDelta：流式分块
- ChunkAggregator：把分块拼回完整的 assistant 消息
"""

from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from ..messages import Message, ToolCallRequest, Usage

logger = logging.getLogger(__name__)


@dataclass
class Prompt:
    """一次模型调用的完整输入"""

    # 系统提示
    system: str = ""

    # 对话消息
    messages: List[Message] = field(default_factory=list)

    # 工具 Schema（{"name","description","input_schema"} 格式）
    tools: List[Dict[str, Any]] = field(default_factory=list)

    # 额外选项（model / max_tokens / temperature 等，由适配器解释）
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelResponse:
    """模型的完整响应"""

    message: Message
    usage: Usage = field(default_factory=Usage)
    stop_reason: Optional[str] = None
    model: Optional[str] = None

    @property
    def tool_calls(self) -> List[ToolCallRequest]:
        return self.message.tool_calls

    @property
    def text(self) -> str:
        return self.message.content


@dataclass
class ToolCallDelta:
    """
    工具调用的流式片段

    同一 id 的 arguments 片段按到达顺序拼接
    """

    id: str
    name: Optional[str] = None
    arguments: str = ""


@dataclass
class ModelChunk:
    """流式响应的一个分块"""

    text: str = ""
    tool_calls: List[ToolCallDelta] = field(default_factory=list)
    usage: Optional[Usage] = None
    stop_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "tool_calls": [
                {"id": delta.id, "name": delta.name, "arguments": delta.arguments}
                for delta in self.tool_calls
            ],
            "usage": self.usage.to_dict() if self.usage else None,
            "stop_reason": self.stop_reason,
        }


class ModelClient(ABC):
    """模型客户端接口"""

    @abstractmethod
    async def call(self, prompt: Prompt) -> ModelResponse:
        """阻塞调用，返回完整响应"""

    @abstractmethod
    def stream(self, prompt: Prompt) -> AsyncIterator[ModelChunk]:
        """
        流式调用，逐个产出分块

        实现为异步生成器；调用方中断时通过 aclose() 关闭，连接在生成器的 finally 中释放
        """


class ChunkAggregator:
    """
    流式分块聚合器

    文本按顺序拼接；工具调用按 id 聚合，保持首次出现的顺序；
    usage 取各分块之和。
    """

    def __init__(self):
        self._text: List[str] = []
        self._calls: Dict[str, ToolCallRequest] = {}
        self.usage = Usage()
        self.stop_reason: Optional[str] = None
        self.chunk_count = 0

    def add(self, chunk: ModelChunk):
        self.chunk_count += 1

        if chunk.text:
            self._text.append(chunk.text)

        for delta in chunk.tool_calls:
            call = self._calls.get(delta.id)
            if call is None:
                call = ToolCallRequest(id=delta.id, name=delta.name or "", arguments="")
                self._calls[delta.id] = call
            elif delta.name and not call.name:
                call.name = delta.name
            call.arguments += delta.arguments or ""

        if chunk.usage is not None:
            self.usage.add(chunk.usage)

        if chunk.stop_reason:
            self.stop_reason = chunk.stop_reason

    @property
    def text(self) -> str:
        return "".join(self._text)

    def build_message(self) -> Message:
        return Message.assistant(self.text, tool_calls=list(self._calls.values()))

    def build_response(self) -> ModelResponse:
        return ModelResponse(
            message=self.build_message(),
            usage=self.usage,
            stop_reason=self.stop_reason,
        )
