"""
Agent State Machine

驱动 Agent 反复执行 think/act step 的状态机。

状态：CREATED → RUNNING → {COMPLETED, FAILED, INTERRUPTED}

run() 流程：
1. 校验状态（运行中 → AlreadyRunningError，已终止 → AlreadyFinishedError）
2. 置为 RUNNING，通知 run 观察者
3. continuation 谓词为真时循环执行 step：
   - step 成功 → 记录输出
   - step 失败 → 记录错误，交给 fallback 策略处理一次
     （中断与致命错误不交给 fallback）
   - 每轮 loop_count 加 1
4. 正常退出 → COMPLETED；中断 → INTERRUPTED；其它失败 → FAILED
"""

from __future__ import annotations
import asyncio
import logging
import uuid
from contextlib import aclosing
from typing import AsyncIterator, Callable, Iterable, List, Optional, Union

from ..config import AgentConfig
from ..constants import StreamEventType
from ..errors import (
    AgentExecutionError,
    AgentInterruptedError,
    AgentLoopError,
    AlreadyFinishedError,
    AlreadyRunningError,
)
from ..listeners import (
    AgentRunListener,
    AgentStepListener,
    ListenerRegistry,
    ToolExecuteListener,
)
from ..messages import ConversationHistory, Message
from ..signals import AbortSignal
from ..storage.conversation_store import ConversationStore
from ..tools.base import Tool
from ..tools.tool_registry import ToolRegistry
from .compressor import ContextCompressor
from .concurrency_scheduler import ConcurrencyScheduler
from .context import ExecutionContext
from .model_client import ModelClient
from .prompt_builder import PromptBuilder
from .resolution import ToolCallingLoop, TurnResult
from .state import AgentInput, AgentOutput, AgentProfile, AgentState, AgentStatus
from .strategies import ContinuationPredicate, FailFastFallback, FallbackStrategy, MaxLoopCount
from .stream_generator import StreamEvent
from .tool_executor import ToolExecutor

logger = logging.getLogger(__name__)

InputLike = Union[str, Message, List[Message], AgentInput]


class Agent:
    """
    Agent

    持有自己的状态、会话历史、工具注册表与调度器
    """

    def __init__(
        self,
        profile: Union[str, AgentProfile],
        model_client: ModelClient,
        tools: Union[ToolRegistry, Iterable[Tool], None] = None,
        config: Optional[AgentConfig] = None,
        continuation: Optional[ContinuationPredicate] = None,
        fallback: Optional[FallbackStrategy] = None,
        compressor: Optional[ContextCompressor] = None,
        conversation_store: Optional[ConversationStore] = None,
        conversation_id: Optional[str] = None,
        scheduler: Optional[ConcurrencyScheduler] = None,
        executor: Optional[ToolExecutor] = None,
        session_id: Optional[str] = None,
    ):
        """
        初始化 Agent

        Args:
            profile: Agent 名称或 AgentProfile
            model_client: 模型客户端
            tools: 工具注册表或工具列表
            config: Agent 配置
            continuation: 是否继续下一个 step 的谓词（默认 MaxLoopCount(config.max_loop_count)）
            fallback: step 失败时的策略（默认 FailFastFallback）
            compressor: 上下文压缩器（默认按 config.compression 创建，禁用时为 None）
            conversation_store: 会话存储（可选）
            conversation_id: 会话存储使用的 ID（默认 session_id）
            scheduler: 工具批次调度器
            executor: 工具执行器
            session_id: 会话 ID
        """
        self.profile = profile if isinstance(profile, AgentProfile) else AgentProfile(name=profile)
        self.config = config or AgentConfig()
        self.model_client = model_client
        self.session_id = session_id or f"session_{uuid.uuid4().hex[:12]}"

        self.tools = tools if isinstance(tools, ToolRegistry) else ToolRegistry(tools or ())
        self.history = ConversationHistory()
        self.state = AgentState()

        # 观察者
        self.run_listeners: ListenerRegistry[AgentRunListener] = ListenerRegistry()
        self.step_listeners: ListenerRegistry[AgentStepListener] = ListenerRegistry()

        # 策略
        self.continuation: ContinuationPredicate = continuation or MaxLoopCount(self.config.max_loop_count)
        self.fallback_strategy: FallbackStrategy = fallback or FailFastFallback()

        # 工具执行
        self.scheduler = scheduler or ConcurrencyScheduler(self.config.max_concurrent_tools)
        if executor is None:
            executor = ToolExecutor(tracker=self.state.tool_call_tracker)
        else:
            self.state.tool_call_tracker = executor.tracker
        self.executor = executor

        if compressor is None and self.config.compression.enabled:
            compressor = ContextCompressor(model_client, self.config.compression, model=self.config.model)
        self.compressor = compressor

        self.loop = ToolCallingLoop(
            model_client=model_client,
            registry=self.tools,
            history=self.history,
            executor=self.executor,
            scheduler=self.scheduler,
            compressor=self.compressor,
            prompt_builder=PromptBuilder(self.config.system_prompt, self.config.model_options()),
            max_tool_rounds=self.config.max_tool_rounds,
        )

        # 会话存储
        self.conversation_store = conversation_store
        self.conversation_id = conversation_id or self.session_id

        self._in_step = False
        self._current_context: Optional[ExecutionContext] = None

        logger.info(f"Agent 初始化：{self.profile.name} ({len(self.tools)} 个工具)")

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def status(self) -> AgentStatus:
        return self.state.status

    # ============================================
    # 观察者注册
    # ============================================

    def add_run_listener(self, listener: AgentRunListener) -> AgentRunListener:
        return self.run_listeners.register(listener)

    def add_step_listener(self, listener: AgentStepListener) -> AgentStepListener:
        return self.step_listeners.register(listener)

    def add_tool_listener(self, listener: ToolExecuteListener) -> ToolExecuteListener:
        return self.executor.listeners.register(listener)

    # ============================================
    # 运行
    # ============================================

    async def run(self, agent_input: InputLike, signal: Optional[AbortSignal] = None) -> Optional[AgentOutput]:
        """
        运行 Agent 直到 continuation 谓词为假

        Args:
            agent_input: 文本、消息、消息列表或 AgentInput
            signal: 中断信号（可选）

        Returns:
            最后一个 step 的输出

        Raises:
            AlreadyRunningError: Agent 正在运行
            AlreadyFinishedError: Agent 已终止，需要先 reset()
            AgentInterruptedError: 执行被中断
            AgentLoopError: 其它失败（fallback 未能恢复）
        """
        async for _ in self._run_events(AgentInput.of(agent_input, signal), streaming=False):
            pass
        return self.state.last_output

    async def run_stream(
        self,
        agent_input: InputLike,
        signal: Optional[AbortSignal] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        流式运行 Agent，状态机语义与 run() 相同

        Yields:
            step 事件、模型分块、工具事件，以及最终的 done 事件
        """
        # 调用方关闭本流时一并关闭内部生成器，使状态落到 INTERRUPTED
        async with aclosing(self._run_events(AgentInput.of(agent_input, signal), streaming=True)) as events:
            async for event in events:
                yield event

    async def step(self, agent_input: InputLike) -> AgentOutput:
        """
        执行单个 step（一个完整的工具调用解析 turn）

        Raises:
            AlreadyRunningError: 已有 step 在执行
        """
        if self._in_step:
            raise AlreadyRunningError(f"Agent {self.name} is already executing a step")

        agent_input = AgentInput.of(agent_input)
        context = self._current_context or self._new_context(agent_input)

        result = TurnResult()
        async for _ in self._step_events(agent_input, context, result, streaming=False):
            pass
        return result.to_output()

    def abort(self, reason: Optional[str] = None) -> bool:
        """中断当前 run；未在运行时返回 False"""
        if self._current_context is None:
            return False
        self._current_context.abort_signal.abort(reason)
        return True

    def reset(self, clear_history: bool = True):
        """
        重置状态、计数器与调用记录

        Args:
            clear_history: 是否同时清空会话历史

        Raises:
            AlreadyRunningError: Agent 正在运行
        """
        if self.state.is_running:
            raise AlreadyRunningError(f"Agent {self.name} cannot be reset while running")

        self.state.reset()
        if clear_history:
            self.history.clear()

        logger.info(f"Agent 已重置：{self.name}")

    # ============================================
    # 状态机实现
    # ============================================

    def _check_can_run(self):
        if self.state.status == AgentStatus.RUNNING:
            raise AlreadyRunningError(f"Agent {self.name} is already running")
        if self.state.is_finished:
            raise AlreadyFinishedError(
                f"Agent {self.name} already finished with status {self.state.status.value}; call reset() first"
            )

    def _new_context(self, agent_input: AgentInput) -> ExecutionContext:
        return ExecutionContext(
            session_id=self.session_id,
            agent_name=self.name,
            abort_signal=agent_input.signal,
            metadata=agent_input.metadata,
        )

    async def _run_events(self, agent_input: AgentInput, streaming: bool) -> AsyncIterator[StreamEvent]:
        self._check_can_run()

        self.state.status = AgentStatus.RUNNING
        context = self._new_context(agent_input)
        self._current_context = context

        self.run_listeners.notify(
            lambda listener: listener.on_agent_start(self, agent_input),
            event="agent_start",
        )

        try:
            self._load_conversation()

            step_input = agent_input
            while self.continuation(self.state, agent_input, self.state.last_output):
                context.check_abort()

                try:
                    result = TurnResult()
                    step_events = self._step_events(step_input, context, result, streaming)
                    try:
                        async for event in step_events:
                            if streaming:
                                yield event
                    finally:
                        # 流被提前关闭时也要结束 step
                        await step_events.aclose()
                    output = result.to_output()

                except AgentInterruptedError:
                    raise

                except AgentLoopError as e:
                    if e.fatal:
                        raise
                    output = await self.fallback_strategy.fallback(self, step_input, e)

                except Exception as e:
                    wrapped = AgentExecutionError(f"Step failed: {e}", cause=e)
                    output = await self.fallback_strategy.fallback(self, step_input, wrapped)

                finally:
                    self.state.loop_count += 1

                self.state.last_output = output
                step_input = agent_input.continuation()

            self._store_conversation()

        except AgentInterruptedError as e:
            self.state.status = AgentStatus.INTERRUPTED
            self.state.last_error = e
            logger.warning(f"Agent 已中断：{self.name} - {e}")
            self._notify_run_exception(agent_input, e)
            raise

        except (GeneratorExit, asyncio.CancelledError):
            # 流被调用方关闭或任务被取消
            self.state.status = AgentStatus.INTERRUPTED
            raise

        except Exception as e:
            self.state.status = AgentStatus.FAILED
            self.state.last_error = e
            logger.error(f"Agent 执行失败：{self.name} - {e}")
            self._notify_run_exception(agent_input, e)
            raise

        finally:
            self._current_context = None

        self.state.status = AgentStatus.COMPLETED
        output = self.state.last_output
        if output is not None:
            self.run_listeners.notify(
                lambda listener: listener.on_agent_output(self, agent_input, output),
                event="agent_output",
            )

        if streaming:
            yield StreamEvent(
                event_type=StreamEventType.DONE,
                data={
                    "status": self.state.status.value,
                    "text": output.text if output is not None else "",
                    "loop_count": self.state.loop_count,
                    "usage": context.usage.to_dict(),
                },
            )

    async def _step_events(
        self,
        step_input: AgentInput,
        context: ExecutionContext,
        result: TurnResult,
        streaming: bool,
    ) -> AsyncIterator[StreamEvent]:
        self.step_listeners.notify(
            lambda listener: listener.on_step_start(self, step_input),
            event="step_start",
        )

        self._in_step = True
        try:
            if streaming:
                yield StreamEvent(
                    event_type=StreamEventType.STEP_START,
                    data={"loop_count": self.state.loop_count},
                )
                async with aclosing(self.loop.stream_turn(step_input.messages, context, result)) as events:
                    async for event in events:
                        yield event
            else:
                await self.loop.run_turn(step_input.messages, context, result)
            output = result.to_output()

        except Exception as e:
            self.state.last_error = e
            self.step_listeners.notify(
                lambda listener: listener.on_step_error(self, step_input, e),
                event="step_error",
            )
            raise

        finally:
            self._in_step = False

        self.step_listeners.notify(
            lambda listener: listener.on_step_finish(self, step_input, output),
            event="step_finish",
        )

        if streaming:
            yield StreamEvent(
                event_type=StreamEventType.STEP_FINISH,
                data={"loop_count": self.state.loop_count, "text": output.text},
            )

    def _notify_run_exception(self, agent_input: AgentInput, error: BaseException):
        self.run_listeners.notify(
            lambda listener: listener.on_agent_exception(self, agent_input, error),
            event="agent_exception",
        )

    # ============================================
    # 会话存储（仅在 turn 边界）
    # ============================================

    def _load_conversation(self):
        if self.conversation_store is None or len(self.history) > 0:
            return
        messages = self.conversation_store.load(self.conversation_id)
        if messages:
            self.history.load(messages)
            logger.info(f"已恢复会话：{self.conversation_id} ({len(messages)} 条消息)")

    def _store_conversation(self):
        if self.conversation_store is None:
            return
        self.conversation_store.store(self.conversation_id, self.history.messages)

    def get_stats(self):
        return {
            "name": self.name,
            "state": self.state.to_dict(),
            "messages": len(self.history),
            "loop": self.loop.get_stats(),
            "executor": self.executor.get_stats(),
            "scheduler": self.scheduler.get_stats(),
        }

    def __repr__(self) -> str:
        return (
            f"Agent(name={self.name!r}, status={self.state.status.value}, "
            f"loop_count={self.state.loop_count})"
        )
