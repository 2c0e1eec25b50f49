"""
Core Module

Agent 状态机、工具调用解析循环、工具执行管道与上下文压缩。

组件：
- Agent: 状态机（run / run_stream / step / reset）
- ToolCallingLoop: 单个 turn 的工具调用解析循环
- ToolExecutor: 工具执行管道
- ConcurrencyScheduler: 工具批次调度
- ContextCompressor: 上下文压缩
- ModelClient: 模型调用接口
"""

from .agent import Agent
from .compressor import CompressionDecision, CompressionResult, ContextCompressor
from .concurrency_scheduler import ConcurrencyScheduler, ScheduledTask, TaskStatus
from .context import ExecutionContext
from .model_client import (
    ChunkAggregator,
    ModelChunk,
    ModelClient,
    ModelResponse,
    Prompt,
    ToolCallDelta,
)
from .prompt_builder import PromptBuilder
from .resolution import ToolCallingLoop, TurnResult
from .state import AgentInput, AgentOutput, AgentProfile, AgentState, AgentStatus
from .strategies import (
    FailFastFallback,
    FallbackStrategy,
    MaxLoopCount,
    RetryFallback,
    StaticFallback,
    UntilOutput,
)
from .stream_generator import StreamEvent
from .tool_executor import BatchToolOutput, ToolExecutor, ToolInput

__all__ = [
    "Agent",
    "CompressionDecision",
    "CompressionResult",
    "ContextCompressor",
    "ConcurrencyScheduler",
    "ScheduledTask",
    "TaskStatus",
    "ExecutionContext",
    "ChunkAggregator",
    "ModelChunk",
    "ModelClient",
    "ModelResponse",
    "Prompt",
    "ToolCallDelta",
    "PromptBuilder",
    "ToolCallingLoop",
    "TurnResult",
    "AgentInput",
    "AgentOutput",
    "AgentProfile",
    "AgentState",
    "AgentStatus",
    "FailFastFallback",
    "FallbackStrategy",
    "MaxLoopCount",
    "RetryFallback",
    "StaticFallback",
    "UntilOutput",
    "StreamEvent",
    "BatchToolOutput",
    "ToolExecutor",
    "ToolInput",
]
