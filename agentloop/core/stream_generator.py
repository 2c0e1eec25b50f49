"""
Stream Events

流式执行期间产出的事件，以及 SSE 编码。
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class StreamEvent:
    """流式执行期间产出的单个事件"""

    # 事件类型（见 StreamEventType）
    event_type: str

    # 事件数据
    data: Dict[str, Any] = field(default_factory=dict)

    # SSE 事件 ID（可选）
    event_id: Optional[str] = None

    # 产生时间
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def payload(self) -> Dict[str, Any]:
        """事件数据附加时间戳"""
        return {**self.data, "timestamp": self.timestamp}

    def to_sse(self) -> str:
        """编码为一个 SSE 消息块（以空行结束）"""
        lines = [f"id: {self.event_id}"] if self.event_id else []
        lines.append(f"event: {self.event_type}")
        lines.append(f"data: {json.dumps(self.payload(), ensure_ascii=False, default=str)}")
        return "\n".join(lines) + "\n\n"
