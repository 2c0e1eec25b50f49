"""
Listeners

运行、step、工具执行的观察者接口，以及按注册顺序、逐个隔离异常地
分发通知的 ListenerRegistry。观察者抛出的异常只记录日志，不影响主流程。
"""

from __future__ import annotations
import logging
import threading
from typing import Any, Callable, Generic, List, TypeVar, TYPE_CHECKING

if TYPE_CHECKING:
    from .core.agent import Agent
    from .core.state import AgentInput, AgentOutput
    from .tools.base import Tool, ToolContext

logger = logging.getLogger(__name__)

L = TypeVar("L")


class ListenerRegistry(Generic[L]):
    """
    观察者列表

    通知时遍历快照，注册/注销可以与通知并发进行。
    """

    def __init__(self):
        self._listeners: List[L] = []
        self._lock = threading.Lock()

    def register(self, listener: L) -> L:
        with self._lock:
            self._listeners = self._listeners + [listener]
        return listener

    def unregister(self, listener: L) -> bool:
        with self._lock:
            if listener not in self._listeners:
                return False
            self._listeners = [item for item in self._listeners if item != listener]
        return True

    def notify(self, callback: Callable[[L], Any], event: str = "event"):
        """
        按注册顺序通知每个观察者

        Args:
            callback: 接收单个观察者并调用其回调的函数
            event: 事件名称（仅用于日志）
        """
        for listener in self._listeners:
            try:
                callback(listener)
            except Exception as e:
                logger.warning(
                    f"观察者处理 {event} 失败：{type(listener).__name__} - {e}",
                    exc_info=True,
                )

    def __len__(self) -> int:
        return len(self._listeners)

    def __iter__(self):
        return iter(self._listeners)


# ============================================
# 观察者接口
# ============================================

class AgentRunListener:
    """run() 生命周期观察者"""

    def on_agent_start(self, agent: "Agent", agent_input: "AgentInput"):
        pass

    def on_agent_output(self, agent: "Agent", agent_input: "AgentInput", output: "AgentOutput"):
        pass

    def on_agent_exception(self, agent: "Agent", agent_input: "AgentInput", error: BaseException):
        pass


class AgentStepListener:
    """step 生命周期观察者"""

    def on_step_start(self, agent: "Agent", agent_input: "AgentInput"):
        pass

    def on_step_finish(self, agent: "Agent", agent_input: "AgentInput", output: "AgentOutput"):
        pass

    def on_step_error(self, agent: "Agent", agent_input: "AgentInput", error: BaseException):
        pass


class ToolExecuteListener:
    """工具执行观察者"""

    def on_tool_input(self, context: "ToolContext", tool: "Tool", tool_input: Any):
        pass

    def on_tool_output(self, context: "ToolContext", tool: "Tool", tool_input: Any, output: Any):
        pass

    def on_tool_exception(self, context: "ToolContext", tool: "Tool", tool_input: Any, error: BaseException):
        pass


class LoggingAgentListener(AgentRunListener, AgentStepListener):
    """把运行与 step 事件写入日志"""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def on_agent_start(self, agent, agent_input):
        logger.log(self.level, f"[{agent.name}] run 开始：{len(agent_input.messages)} 条输入消息")

    def on_agent_output(self, agent, agent_input, output):
        logger.log(
            self.level,
            f"[{agent.name}] run 完成：loop_count={agent.state.loop_count}, "
            f"tokens={output.usage.total_tokens}",
        )

    def on_agent_exception(self, agent, agent_input, error):
        logger.error(f"[{agent.name}] run 失败：{type(error).__name__} - {error}")

    def on_step_start(self, agent, agent_input):
        logger.log(self.level, f"[{agent.name}] step {agent.state.loop_count + 1} 开始")

    def on_step_finish(self, agent, agent_input, output):
        logger.log(
            self.level,
            f"[{agent.name}] step {agent.state.loop_count + 1} 完成：rounds={output.rounds}",
        )

    def on_step_error(self, agent, agent_input, error):
        logger.warning(f"[{agent.name}] step {agent.state.loop_count + 1} 失败：{error}")
