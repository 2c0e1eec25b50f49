"""
Execution Context

贯穿一次 run 的共享上下文。
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..messages import Usage
from ..signals import AbortSignal
from ..tools.base import ToolContext


@dataclass
class ExecutionContext:
    """
    Agent 执行上下文

    贯穿整个执行流程的共享上下文
    """

    # 会话 ID
    session_id: str = ""

    # Agent 名称
    agent_name: str = ""

    # 中断信号
    abort_signal: AbortSignal = field(default_factory=AbortSignal)

    # Token 使用统计（整个 run 的累计）
    usage: Usage = field(default_factory=Usage)

    # 压缩历史
    compression_history: List[Dict[str, Any]] = field(default_factory=list)

    # 执行开始时间
    started_at: datetime = field(default_factory=datetime.now)

    # 元数据
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_compressed(self) -> bool:
        return bool(self.compression_history)

    def tool_context(self, call_id: Optional[str] = None) -> ToolContext:
        """派生工具执行上下文"""
        return ToolContext(
            agent_name=self.agent_name,
            session_id=self.session_id,
            call_id=call_id,
            abort_signal=self.abort_signal,
            metadata=self.metadata,
        )

    def check_abort(self):
        """
        Raises:
            AgentInterruptedError: 中断信号已触发
        """
        self.abort_signal.raise_if_aborted()
