"""
agentloop

Tool-calling agent runtime: an agent state machine, a tool-calling
resolution loop, a tool execution pipeline and context compression.
"""

from .config import AgentConfig, CompressionConfig, configure_logging
from .core import (
    Agent,
    AgentInput,
    AgentOutput,
    AgentProfile,
    AgentState,
    AgentStatus,
    ContextCompressor,
    FailFastFallback,
    MaxLoopCount,
    ModelChunk,
    ModelClient,
    ModelResponse,
    Prompt,
    RetryFallback,
    StaticFallback,
    StreamEvent,
    ToolCallDelta,
    ToolExecutor,
    UntilOutput,
)
from .errors import (
    AgentExecutionError,
    AgentInterruptedError,
    AgentLoopError,
    AlreadyFinishedError,
    AlreadyRunningError,
    CompressionError,
    DuplicateToolError,
    ToolArgumentError,
    ToolError,
    ToolExecutionError,
    ToolLoopExceededError,
    ToolNotFoundError,
)
from .listeners import (
    AgentRunListener,
    AgentStepListener,
    LoggingAgentListener,
    ToolExecuteListener,
)
from .messages import ConversationHistory, Message, MessageRole, ToolCallRequest, ToolCallResult, Usage
from .signals import AbortSignal
from .tools import FunctionTool, Tool, ToolDefinition, ToolRegistry, tool

__version__ = "0.1.0"
