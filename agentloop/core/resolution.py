"""
Tool-Calling Resolution Loop

单个 turn 内的工具调用解析循环。

核心流程：
1. 追加本 turn 的输入消息（移动 turn_start / turn_output_start）
2. 检查中断信号 → 压缩检查 → 构建 Prompt
3. 调用模型（阻塞或流式）
4. 无工具调用 → 追加 assistant 消息并结束 turn
5. 有工具调用 → 追加 assistant 消息，按注册表解析并执行，
   每个调用追加一条 tool 消息（按请求顺序）
6. 回到 2；模型调用次数超过上限 → ToolLoopExceededError

工具级错误（未知工具、参数错误、执行失败、权限拒绝）转换为错误工具结果交还模型；
中断信号一旦触发，不再启动新的工具，已启动的工具运行完毕但结果被丢弃；
批次中的每个调用改为追加一条错误工具结果，保持调用与结果一一对应。
"""

from __future__ import annotations
import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable, List, Optional

from ..constants import DEFAULT_MAX_TOOL_ROUNDS, StreamEventType
from ..errors import (
    AgentExecutionError,
    AgentInterruptedError,
    AgentLoopError,
    ToolError,
    ToolLoopExceededError,
    ToolNotFoundError,
)
from ..messages import ConversationHistory, Message, ToolCallRequest, ToolCallResult, Usage
from ..tools.base import Tool
from ..tools.tool_registry import ToolRegistry
from .compressor import ContextCompressor
from .concurrency_scheduler import ConcurrencyScheduler, ScheduledTask, TaskStatus
from .context import ExecutionContext
from .model_client import ChunkAggregator, ModelClient, ModelResponse, Prompt
from .prompt_builder import PromptBuilder
from .state import AgentOutput
from .stream_generator import StreamEvent
from .tool_executor import ToolExecutor

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    """一个 turn 的结果（在循环中逐步填充）"""

    message: Optional[Message] = None
    usage: Usage = field(default_factory=Usage)
    rounds: int = 0
    tool_results: List[ToolCallResult] = field(default_factory=list)

    def to_output(self) -> AgentOutput:
        if self.message is None:
            raise AgentExecutionError("Turn finished without a final assistant message")
        return AgentOutput(
            message=self.message,
            usage=self.usage,
            rounds=self.rounds,
            tool_results=list(self.tool_results),
        )


class ToolCallingLoop:
    """
    工具调用解析循环

    每个 Agent 持有一个实例；同一时间只运行一个 turn
    """

    def __init__(
        self,
        model_client: ModelClient,
        registry: ToolRegistry,
        history: ConversationHistory,
        executor: Optional[ToolExecutor] = None,
        scheduler: Optional[ConcurrencyScheduler] = None,
        compressor: Optional[ContextCompressor] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ):
        """
        初始化解析循环

        Args:
            model_client: 模型客户端
            registry: 工具注册表
            history: 会话历史（由本循环追加）
            executor: 工具执行器
            scheduler: 工具批次调度器
            compressor: 上下文压缩器（None 时不压缩）
            prompt_builder: Prompt 构建器
            max_tool_rounds: 单个 turn 的模型调用上限
        """
        if max_tool_rounds < 1:
            raise ValueError(f"max_tool_rounds must be >= 1, got {max_tool_rounds}")

        self.model_client = model_client
        self.registry = registry
        self.history = history
        self.executor = executor or ToolExecutor()
        self.scheduler = scheduler or ConcurrencyScheduler()
        self.compressor = compressor
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.max_tool_rounds = max_tool_rounds

        # 统计信息
        self._stats = {
            "turns": 0,
            "model_calls": 0,
            "tool_calls": 0,
            "tool_errors": 0,
            "compressions": 0,
        }

    # ============================================
    # 公共接口
    # ============================================

    async def run_turn(
        self,
        new_messages: Iterable[Message],
        context: ExecutionContext,
        result: Optional[TurnResult] = None,
    ) -> TurnResult:
        """
        阻塞执行一个 turn

        Args:
            new_messages: 本 turn 的新输入消息
            context: 执行上下文
            result: 可选的结果容器

        Returns:
            turn 结果

        Raises:
            AgentInterruptedError: 中断信号触发
            ToolLoopExceededError: 模型调用次数超过上限
            CompressionError: 压缩失败
        """
        result = result if result is not None else TurnResult()
        async for _ in self._turn_events(new_messages, context, result, streaming=False):
            pass
        return result

    async def stream_turn(
        self,
        new_messages: Iterable[Message],
        context: ExecutionContext,
        result: Optional[TurnResult] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        流式执行一个 turn

        模型分块到达即转发；同一调用 ID 的参数片段按到达顺序拼接后再解析。

        Args:
            new_messages: 本 turn 的新输入消息
            context: 执行上下文
            result: 可选的结果容器，结束时被填充

        Yields:
            流式事件
        """
        result = result if result is not None else TurnResult()
        async with aclosing(self._turn_events(new_messages, context, result, streaming=True)) as events:
            async for event in events:
                yield event

    # ============================================
    # 循环实现
    # ============================================

    async def _turn_events(
        self,
        new_messages: Iterable[Message],
        context: ExecutionContext,
        result: TurnResult,
        streaming: bool,
    ) -> AsyncIterator[StreamEvent]:
        self.history.begin_turn(list(new_messages))
        self._stats["turns"] += 1

        rounds = 0
        while True:
            if rounds >= self.max_tool_rounds:
                logger.error(f"工具调用循环超过上限：{self.max_tool_rounds} 次模型调用")
                raise ToolLoopExceededError(self.max_tool_rounds)

            context.check_abort()

            # 压缩检查
            if self.compressor is not None:
                compression = await self.compressor.compress_if_needed(self.history, context)
                if compression is not None:
                    self._stats["compressions"] += 1
                    yield StreamEvent(
                        event_type=StreamEventType.COMPRESSION_SUCCESS,
                        data={
                            "removed": len(compression.removed_messages),
                            "retained": len(compression.retained_messages),
                            "compression_ratio": compression.compression_ratio,
                        },
                    )

            context.check_abort()

            prompt = self.prompt_builder.build(self.history.prompt_view(), self.registry, context)

            # 调用模型
            if streaming:
                aggregator = ChunkAggregator()
                async with aclosing(self.model_client.stream(prompt)) as chunks:
                    async for chunk in chunks:
                        aggregator.add(chunk)
                        yield StreamEvent(event_type=StreamEventType.MODEL_CHUNK, data=chunk.to_dict())
                        context.check_abort()
                        if chunk.text:
                            yield StreamEvent(event_type=StreamEventType.TEXT_DELTA, data={"text": chunk.text})
                            context.check_abort()
                response = aggregator.build_response()
            else:
                response = await self._call_model(prompt)

            rounds += 1
            self._stats["model_calls"] += 1
            result.rounds = rounds
            result.usage.add(response.usage)
            context.usage.add(response.usage)

            yield StreamEvent(
                event_type=StreamEventType.TOKEN_USAGE,
                data={
                    "round": rounds,
                    "usage": response.usage.to_dict(),
                    "turn_usage": result.usage.to_dict(),
                },
            )

            message = response.message
            self.history.append(message)

            if not message.tool_calls:
                result.message = message
                logger.debug(f"turn 完成：{rounds} 次模型调用")
                yield StreamEvent(
                    event_type=StreamEventType.TURN_COMPLETE,
                    data={
                        "text": message.content,
                        "rounds": rounds,
                        "usage": result.usage.to_dict(),
                    },
                )
                return

            yield StreamEvent(
                event_type=StreamEventType.TOOL_CALLS,
                data={"tool_calls": [call.to_dict() for call in message.tool_calls]},
            )

            try:
                tool_results = await self._execute_tool_calls(message.tool_calls, context)
            except (AgentLoopError, asyncio.CancelledError) as e:
                # 已追加的每个工具调用都要有一条对应的 tool 消息
                self._append_unfinished_results(message.tool_calls, e)
                raise

            for tool_result in tool_results:
                self.history.append(Message.tool(tool_result))
                result.tool_results.append(tool_result)
                yield StreamEvent(event_type=StreamEventType.TOOL_RESULT, data=tool_result.to_dict())

    async def _call_model(self, prompt: Prompt) -> ModelResponse:
        logger.debug(f"调用模型：{len(prompt.messages)} 条消息")
        return await self.model_client.call(prompt)

    async def _execute_tool_calls(
        self,
        requests: List[ToolCallRequest],
        context: ExecutionContext,
    ) -> List[ToolCallResult]:
        """
        执行一批工具调用

        全部工具均为并发安全时并发执行，否则严格按请求顺序执行。

        Returns:
            按请求顺序排列的工具结果

        Raises:
            AgentInterruptedError: 批次执行期间中断信号触发
        """
        resolved = [(request, self.registry.lookup(request.name)) for request in requests]
        tools = [found for _, found in resolved if not isinstance(found, ToolNotFoundError)]
        concurrent = len(resolved) > 1 and all(item.concurrency_safe for item in tools)

        tasks = [
            ScheduledTask(task_id=request.id, func=self._make_job(request, found, context))
            for request, found in resolved
        ]

        self._stats["tool_calls"] += len(tasks)
        await self.scheduler.execute_batch(tasks, concurrent=concurrent, abort_signal=context.abort_signal)

        # 中断后丢弃本批次结果
        if context.abort_signal.is_aborted:
            logger.warning("工具批次执行期间收到中断信号，丢弃批次结果")
            raise AgentInterruptedError(reason=context.abort_signal.reason)

        results: List[ToolCallResult] = []
        for request, task in zip(requests, tasks):
            if task.status == TaskStatus.COMPLETED:
                results.append(ToolCallResult(
                    call_id=request.id,
                    tool_name=request.name,
                    content=task.result,
                ))
            elif isinstance(task.error, AgentInterruptedError):
                raise task.error
            elif isinstance(task.error, ToolError):
                self._stats["tool_errors"] += 1
                results.append(ToolCallResult(
                    call_id=request.id,
                    tool_name=request.name,
                    content=f"Error: {task.error}",
                    is_error=True,
                ))
            else:
                raise AgentExecutionError(
                    f"Tool call {request.name} ended unexpectedly: {task.error}",
                    cause=task.error,
                )

        return results

    def _append_unfinished_results(self, requests: List[ToolCallRequest], error: BaseException):
        """按请求顺序为未完成的批次追加错误工具结果"""
        if isinstance(error, AgentInterruptedError):
            reason = f"Tool call cancelled: {error.reason or 'interrupted'}"
        elif isinstance(error, asyncio.CancelledError):
            reason = "Tool call cancelled: task cancelled"
        else:
            reason = f"Tool call not completed: {error}"

        for request in requests:
            self.history.append(Message.tool(ToolCallResult(
                call_id=request.id,
                tool_name=request.name,
                content=f"Error: {reason}",
                is_error=True,
            )))
        logger.debug(f"已为 {len(requests)} 个未完成的工具调用追加错误结果")

    def _make_job(self, request: ToolCallRequest, found, context: ExecutionContext):
        async def job() -> str:
            if isinstance(found, ToolNotFoundError):
                raise found
            tool: Tool = found
            return await self.executor.execute_text(
                context.tool_context(request.id),
                tool,
                request.arguments,
                call_id=request.id,
            )

        return job

    def get_stats(self):
        return dict(self._stats)

    def __repr__(self) -> str:
        return (
            f"ToolCallingLoop(turns={self._stats['turns']}, "
            f"model_calls={self._stats['model_calls']}, "
            f"max_tool_rounds={self.max_tool_rounds})"
        )
