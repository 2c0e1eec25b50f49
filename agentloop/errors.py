"""
Error Taxonomy

agentloop 的异常层级。

- 工具级错误（ToolError 及其子类）在解析循环内被转换为错误工具结果，交还给模型
- 循环级错误（AgentExecutionError 及其子类）上抛到状态机，由 fallback 策略处理
- AgentInterruptedError 表示协作式取消，从不交给 fallback
"""

from __future__ import annotations
from typing import Optional


class AgentLoopError(Exception):
    """所有 agentloop 异常的基类"""

    # 致命错误不会交给 fallback 策略
    fatal: bool = False

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


# ============================================
# 工具级错误
# ============================================

class ToolError(AgentLoopError):
    """工具调用相关错误"""

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause=cause)
        self.tool_name = tool_name


class ToolArgumentError(ToolError):
    """工具输入无法解析或校验失败"""


class ToolExecutionError(ToolError):
    """工具执行过程中抛出异常"""


class ToolRejectedError(ToolError):
    """权限阶段拒绝执行"""


class ToolNotFoundError(ToolError):
    """注册表中不存在该工具"""

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}", tool_name=tool_name)


class DuplicateToolError(ToolError):
    """同名工具已注册"""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool already registered: {tool_name}", tool_name=tool_name)


class ToolRemovalError(ToolError):
    """工具不可移除（例如 toolkit 内置工具）"""


class UnsupportedToolOperationError(ToolError):
    """注册表不支持该操作"""


# ============================================
# 循环级错误
# ============================================

class AgentExecutionError(AgentLoopError):
    """Agent 循环本身的非预期失败，会触发 fallback"""


class ToolLoopExceededError(AgentExecutionError):
    """单个 turn 内模型调用轮数超过上限"""

    fatal = True

    def __init__(self, max_rounds: int):
        super().__init__(f"Tool-calling loop exceeded {max_rounds} model calls")
        self.max_rounds = max_rounds


class CompressionError(AgentExecutionError):
    """上下文压缩的摘要请求失败"""


class AgentInterruptedError(AgentLoopError):
    """协作式取消，终止状态为 INTERRUPTED"""

    def __init__(self, message: str = "Agent execution interrupted", reason: Optional[str] = None):
        super().__init__(message if reason is None else f"{message}: {reason}")
        self.reason = reason


# ============================================
# 状态错误
# ============================================

class AgentStateError(AgentLoopError):
    """在非法状态下调用 run/step"""


class AlreadyRunningError(AgentStateError):
    """Agent 正在运行"""


class AlreadyFinishedError(AgentStateError):
    """Agent 已处于终止状态，需要先 reset()"""
