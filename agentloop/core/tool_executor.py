"""
Tool Executor

工具执行管道。

文本调用的阶段：
1. Input Notify - 通知观察者原始输入
2. Permission - 权限检查
3. Validation - 输入转换（文本 → 结构化）
4. Execution - 实际执行
5. Formatting - 输出转换（结构化 → 文本）
6. Record - 写入 ToolCallRecord（无论成功失败，恰好一条）
7. Output Notify - 通知观察者结果或异常

任何不属于工具错误体系的异常都会被包装为 ToolExecutionError；
AgentInterruptedError 原样透传。
"""

from __future__ import annotations
import inspect
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from ..constants import PermissionBehavior
from ..errors import (
    AgentInterruptedError,
    ToolArgumentError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolRejectedError,
)
from ..listeners import ListenerRegistry, ToolExecuteListener
from ..tools.base import Tool, ToolContext
from ..tools.tool_registry import ToolRegistry
from ..tools.tracker import ToolCallRecord, ToolCallTracker

logger = logging.getLogger(__name__)

PermissionChecker = Callable[[Tool, Any], Union[str, Awaitable[str]]]


@dataclass
class ToolInput:
    """批量执行中的一项输入"""

    # 工具名称
    tool_name: str

    # 原始输入文本
    text: str

    # 调用 ID
    call_id: Optional[str] = None


@dataclass
class BatchToolOutput:
    """批量执行中的一项结果"""

    tool_input: ToolInput

    # 输出文本（失败时为 None）
    output: Optional[str] = None

    # 失败原因
    error: Optional[ToolError] = None

    @property
    def success(self) -> bool:
        return self.error is None


class ToolExecutor:
    """
    工具执行引擎

    结构化调用 execute()、文本调用 execute_text()、批量调用 execute_batch()
    """

    def __init__(
        self,
        tracker: Optional[ToolCallTracker] = None,
        listeners: Optional[ListenerRegistry[ToolExecuteListener]] = None,
        default_permission: str = PermissionBehavior.ALLOW,
    ):
        """
        初始化工具执行器

        Args:
            tracker: 调用追踪器（文本调用的记录写入这里）
            listeners: 工具执行观察者
            default_permission: 默认权限行为
        """
        self.tracker = tracker if tracker is not None else ToolCallTracker()
        self.listeners: ListenerRegistry[ToolExecuteListener] = (
            listeners if listeners is not None else ListenerRegistry()
        )
        self.default_permission = default_permission

        # 权限配置（工具名 -> 权限行为）
        self.permission_config: Dict[str, str] = {}

        # 权限检查回调
        self.permission_checker: Optional[PermissionChecker] = None

        # 统计信息
        self._stats = {
            "executed": 0,
            "successful": 0,
            "failed": 0,
            "rejected": 0,
        }

    # ============================================
    # 结构化调用
    # ============================================

    async def execute(self, context: ToolContext, tool: Tool, tool_input: Any) -> Any:
        """
        执行结构化工具调用

        Args:
            context: 工具执行上下文
            tool: 工具
            tool_input: 结构化输入

        Returns:
            结构化输出

        Raises:
            ToolError: 权限拒绝或执行失败
            AgentInterruptedError: 工具内部观察到中断
        """
        self._notify_input(context, tool, tool_input)

        try:
            await self._stage_permission(tool, tool_input)
            output = await self._stage_execution(context, tool, tool_input)
        except Exception as e:
            self._record_failure(e)
            self._notify_exception(context, tool, tool_input, e)
            raise

        self._stats["executed"] += 1
        self._stats["successful"] += 1
        self._notify_output(context, tool, tool_input, output)
        return output

    # ============================================
    # 文本调用
    # ============================================

    async def execute_text(
        self,
        context: ToolContext,
        tool: Tool,
        text_input: str,
        call_id: Optional[str] = None,
    ) -> str:
        """
        执行文本工具调用

        Args:
            context: 工具执行上下文
            tool: 工具
            text_input: 原始输入文本（通常是 JSON）
            call_id: 调用 ID（缺省时使用 context.call_id 或自动生成）

        Returns:
            输出文本

        Raises:
            ToolArgumentError: 输入转换失败
            ToolRejectedError: 权限拒绝
            ToolExecutionError: 执行或输出转换失败
        """
        call_id = call_id or context.call_id or f"call_{uuid.uuid4().hex[:12]}"
        start_time = datetime.now()
        output_text: Optional[str] = None
        error: Optional[BaseException] = None

        self._notify_input(context, tool, text_input)

        try:
            await self._stage_permission(tool, text_input)
            tool_input = self._stage_validation(tool, text_input)
            result = await self._stage_execution(context, tool, tool_input)
            output_text = self._stage_formatting(tool, result)

        except Exception as e:
            error = e
            self._record_failure(e)
            raise

        finally:
            self.tracker.track(ToolCallRecord(
                id=call_id,
                tool_name=tool.name,
                tool_input=text_input,
                tool_output=output_text,
                error=error,
                start_time=start_time,
                end_time=datetime.now(),
            ))
            if error is not None:
                self._notify_exception(context, tool, text_input, error)

        self._stats["executed"] += 1
        self._stats["successful"] += 1

        logger.info(
            f"工具执行成功：{tool.name} "
            f"({(datetime.now() - start_time).total_seconds():.2f}s)"
        )

        self._notify_output(context, tool, text_input, output_text)
        return output_text

    async def execute_batch(
        self,
        context: ToolContext,
        registry: ToolRegistry,
        inputs: Sequence[ToolInput],
    ) -> List[BatchToolOutput]:
        """
        按顺序执行一批文本调用

        查找失败或执行失败只影响对应条目，不会中止整个批次。

        Args:
            context: 工具执行上下文
            registry: 用于按名称查找工具的注册表
            inputs: 调用列表

        Returns:
            与输入顺序一致的结果列表
        """
        outputs: List[BatchToolOutput] = []

        for item in inputs:
            found = registry.lookup(item.tool_name)
            if isinstance(found, ToolNotFoundError):
                logger.warning(f"[Batch] 未找到工具：{item.tool_name}")
                outputs.append(BatchToolOutput(tool_input=item, error=found))
                continue

            try:
                output = await self.execute_text(
                    context.for_call(item.call_id), found, item.text, call_id=item.call_id
                )
            except ToolError as e:
                outputs.append(BatchToolOutput(tool_input=item, error=e))
            else:
                outputs.append(BatchToolOutput(tool_input=item, output=output))

        return outputs

    # ============================================
    # 阶段实现
    # ============================================

    async def _stage_permission(self, tool: Tool, tool_input: Any):
        """
        Permission - 权限检查

        Raises:
            ToolRejectedError: 拒绝执行
        """
        permission = self.permission_config.get(tool.name, self.default_permission)

        if self.permission_checker is not None:
            try:
                decision = self.permission_checker(tool, tool_input)
                if inspect.isawaitable(decision):
                    decision = await decision
            except Exception as e:
                raise ToolRejectedError(
                    f"Permission check for tool {tool.name} failed: {e}",
                    tool_name=tool.name,
                    cause=e,
                )
            permission = decision

        if permission == PermissionBehavior.ALLOW:
            return

        if permission == PermissionBehavior.ASK:
            logger.warning(f"[Permission] 需要用户确认：{tool.name}（未配置检查器，自动允许）")
            return

        logger.warning(f"[Permission] 拒绝执行：{tool.name} ({permission})")
        raise ToolRejectedError(f"Permission denied for tool {tool.name}", tool_name=tool.name)

    def _stage_validation(self, tool: Tool, text_input: str) -> Any:
        """
        Validation - 文本 → 结构化输入

        Raises:
            ToolArgumentError: 转换失败
        """
        try:
            return tool.converter.input_converter(text_input)
        except Exception as e:
            raise ToolArgumentError(
                f"Invalid input for tool {tool.name}: {e}",
                tool_name=tool.name,
                cause=e,
            )

    async def _stage_execution(self, context: ToolContext, tool: Tool, tool_input: Any) -> Any:
        """
        Execution - 实际执行

        Raises:
            ToolExecutionError: 工具抛出了非工具错误体系的异常
        """
        logger.debug(f"[Execution] 开始执行：{tool.name}")

        try:
            result = tool.run(context, tool_input)

            # 如果是异步函数，await 它
            if hasattr(result, "__await__"):
                result = await result

        except (ToolError, AgentInterruptedError):
            raise
        except Exception as e:
            raise ToolExecutionError(
                f"Call tool {tool.name} failed: {e}",
                tool_name=tool.name,
                cause=e,
            )

        logger.debug(f"[Execution] 执行完成：{tool.name}")
        return result

    def _stage_formatting(self, tool: Tool, result: Any) -> str:
        """
        Formatting - 结构化输出 → 文本

        Raises:
            ToolExecutionError: 转换失败
        """
        try:
            return tool.converter.output_converter(result)
        except Exception as e:
            raise ToolExecutionError(
                f"Cannot convert output of tool {tool.name}: {e}",
                tool_name=tool.name,
                cause=e,
            )

    # ============================================
    # 统计与通知
    # ============================================

    def _record_failure(self, error: BaseException):
        self._stats["executed"] += 1
        if isinstance(error, ToolRejectedError):
            self._stats["rejected"] += 1
        else:
            self._stats["failed"] += 1
        logger.warning(f"工具执行失败：{error}")

    def _notify_input(self, context: ToolContext, tool: Tool, tool_input: Any):
        self.listeners.notify(
            lambda listener: listener.on_tool_input(context, tool, tool_input),
            event="tool_input",
        )

    def _notify_output(self, context: ToolContext, tool: Tool, tool_input: Any, output: Any):
        self.listeners.notify(
            lambda listener: listener.on_tool_output(context, tool, tool_input, output),
            event="tool_output",
        )

    def _notify_exception(self, context: ToolContext, tool: Tool, tool_input: Any, error: BaseException):
        self.listeners.notify(
            lambda listener: listener.on_tool_exception(context, tool, tool_input, error),
            event="tool_exception",
        )

    # ============================================
    # 配置方法
    # ============================================

    def set_permission(self, tool_name: str, behavior: str):
        """
        设置工具权限

        Args:
            tool_name: 工具名称
            behavior: 权限行为 (allow/deny/ask)
        """
        self.permission_config[tool_name] = behavior
        logger.info(f"工具权限已设置：{tool_name} = {behavior}")

    def set_permission_checker(self, checker: Optional[PermissionChecker]):
        """
        设置自定义权限检查器

        Args:
            checker: 接收 (tool, tool_input)，返回权限行为的函数（可为异步）
        """
        self.permission_checker = checker

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "records": len(self.tracker),
        }

    def __repr__(self) -> str:
        stats = self.get_stats()
        return (
            f"ToolExecutor("
            f"executed={stats['executed']}, "
            f"successful={stats['successful']}, "
            f"failed={stats['failed']})"
        )
