"""
Abort Signal

协作式取消信号。可以从任意线程或协程触发，执行循环在每轮开始、
每次模型调用前、每个工具启动前检查。
"""

from __future__ import annotations
import logging
import threading
from typing import Optional

from .errors import AgentInterruptedError

logger = logging.getLogger(__name__)


class AbortSignal:
    """线程安全的中断信号"""

    def __init__(self):
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def abort(self, reason: Optional[str] = None):
        """触发中断（重复触发只保留第一次的原因）"""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()
            logger.info(f"中断信号已触发：{reason or 'no reason'}")

    @property
    def is_aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_aborted(self):
        """
        如果已中断则抛出异常

        Raises:
            AgentInterruptedError: 信号已触发
        """
        if self._event.is_set():
            raise AgentInterruptedError(reason=self._reason)

    def __repr__(self) -> str:
        return f"AbortSignal(aborted={self.is_aborted}, reason={self._reason!r})"
