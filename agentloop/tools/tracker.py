"""
Tool Call Tracker

工具调用记录与只追加的调用追踪器。
"""

from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCallRecord:
    """一次文本工具调用的不可变记录"""

    # 调用 ID
    id: str

    # 工具名称
    tool_name: str

    # 原始输入文本
    tool_input: str

    # 输出文本（失败时为 None）
    tool_output: Optional[str]

    # 失败原因（成功时为 None）
    error: Optional[BaseException]

    # 开始/结束时间
    start_time: datetime
    end_time: datetime

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def duration(self) -> float:
        """执行时间（秒）"""
        return (self.end_time - self.start_time).total_seconds()


class ToolCallTracker:
    """
    工具调用追踪器

    只追加；只有执行管道写入，读取方始终拿到快照。
    """

    def __init__(self):
        self._records: List[ToolCallRecord] = []
        self._lock = threading.Lock()

    def track(self, record: ToolCallRecord):
        with self._lock:
            self._records.append(record)
        logger.debug(
            f"工具调用已记录：{record.tool_name} "
            f"({'ok' if record.succeeded else 'error'}, {record.duration:.3f}s)"
        )

    def records(self) -> List[ToolCallRecord]:
        """全部记录的快照"""
        with self._lock:
            return list(self._records)

    def find(self, predicate: Callable[[ToolCallRecord], bool]) -> List[ToolCallRecord]:
        return [record for record in self.records() if predicate(record)]

    def find_by_tool_name(self, tool_name: str) -> List[ToolCallRecord]:
        return self.find(lambda record: record.tool_name == tool_name)

    def find_by_id(self, call_id: str) -> Optional[ToolCallRecord]:
        for record in self.records():
            if record.id == call_id:
                return record
        return None

    def merge(self, other: "ToolCallTracker"):
        """追加另一个追踪器的全部记录"""
        incoming = other.records()
        with self._lock:
            self._records.extend(incoming)

    def clear(self):
        with self._lock:
            self._records = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[ToolCallRecord]:
        return iter(self.records())

    def __repr__(self) -> str:
        return f"ToolCallTracker(records={len(self)})"
