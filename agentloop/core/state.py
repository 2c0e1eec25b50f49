"""
Agent State Types
代理状态类型定义
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..messages import Message, ToolCallResult, Usage
from ..signals import AbortSignal
from ..tools.tracker import ToolCallTracker


class AgentStatus(str, Enum):
    """Agent lifecycle status"""
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"

    @property
    def is_finished(self) -> bool:
        return self in (AgentStatus.COMPLETED, AgentStatus.FAILED, AgentStatus.INTERRUPTED)


@dataclass(frozen=True)
class AgentProfile:
    """Agent identity, fixed at construction"""
    name: str
    description: str = ""


@dataclass
class AgentState:
    """Agent execution state"""
    status: AgentStatus = AgentStatus.CREATED
    loop_count: int = 0
    retry_count: int = 0
    last_error: Optional[BaseException] = None
    last_output: Optional["AgentOutput"] = None
    tool_call_tracker: ToolCallTracker = field(default_factory=ToolCallTracker)

    @property
    def is_running(self) -> bool:
        return self.status == AgentStatus.RUNNING

    @property
    def is_finished(self) -> bool:
        return self.status.is_finished

    def reset(self):
        self.status = AgentStatus.CREATED
        self.loop_count = 0
        self.retry_count = 0
        self.last_error = None
        self.last_output = None
        self.tool_call_tracker.clear()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "loop_count": self.loop_count,
            "retry_count": self.retry_count,
            "last_error": str(self.last_error) if self.last_error else None,
            "tool_calls": len(self.tool_call_tracker),
        }


@dataclass
class AgentInput:
    """Input for one run / step"""
    messages: List[Message] = field(default_factory=list)
    signal: AbortSignal = field(default_factory=AbortSignal)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def of(cls, value: Union[str, Message, List[Message], "AgentInput"], signal: Optional[AbortSignal] = None) -> "AgentInput":
        """Normalize text, a message, or a message list into an AgentInput"""
        if isinstance(value, AgentInput):
            if signal is not None:
                return AgentInput(messages=value.messages, signal=signal, metadata=value.metadata)
            return value
        if isinstance(value, str):
            messages = [Message.user(value)]
        elif isinstance(value, Message):
            messages = [value]
        else:
            messages = list(value)
        return cls(messages=messages, signal=signal or AbortSignal())

    def continuation(self) -> "AgentInput":
        """Input for follow-up steps: same signal and metadata, no new messages"""
        return AgentInput(messages=[], signal=self.signal, metadata=self.metadata)


@dataclass
class AgentOutput:
    """Result of one step"""
    message: Message
    usage: Usage = field(default_factory=Usage)
    rounds: int = 0
    tool_results: List[ToolCallResult] = field(default_factory=list)
    is_fallback: bool = False

    @property
    def text(self) -> str:
        return self.message.content

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "usage": self.usage.to_dict(),
            "rounds": self.rounds,
            "tool_results": [result.to_dict() for result in self.tool_results],
            "is_fallback": self.is_fallback,
        }
