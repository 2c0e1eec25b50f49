"""
Loop Strategies

决定 run() 是否继续下一个 step 的 continuation 谓词，
以及 step 失败时的 fallback 策略。

Continuation：
- MaxLoopCount(n)：最多执行 n 个 step（默认 1）
- UntilOutput(predicate, max_loops)：直到输出满足条件
- 任意 (state, input, last_output) -> bool 的函数

Fallback：
- FailFastFallback：直接重新抛出（默认）
- RetryFallback(max_retries)：从当前历史继续重试 step，超过次数后失败
- StaticFallback(text)：返回替代输出
"""

from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional, Union, TYPE_CHECKING

from ..constants import DEFAULT_MAX_TOOL_ROUNDS
from ..messages import Message
from .state import AgentInput, AgentOutput, AgentState

if TYPE_CHECKING:
    from .agent import Agent

logger = logging.getLogger(__name__)

ContinuationPredicate = Callable[[AgentState, AgentInput, Optional[AgentOutput]], bool]


# ============================================
# Continuation
# ============================================

class MaxLoopCount:
    """loop_count 未达到上限时继续"""

    def __init__(self, max_loops: int = 1):
        if max_loops < 1:
            raise ValueError(f"max_loops must be >= 1, got {max_loops}")
        self.max_loops = max_loops

    def __call__(self, state: AgentState, agent_input: AgentInput, last_output: Optional[AgentOutput]) -> bool:
        return state.loop_count < self.max_loops

    def __repr__(self) -> str:
        return f"MaxLoopCount({self.max_loops})"


class UntilOutput:
    """输出满足 predicate 或达到上限时停止"""

    def __init__(self, predicate: Callable[[AgentOutput], bool], max_loops: int = DEFAULT_MAX_TOOL_ROUNDS):
        self.predicate = predicate
        self.max_loops = max_loops

    def __call__(self, state: AgentState, agent_input: AgentInput, last_output: Optional[AgentOutput]) -> bool:
        if state.loop_count >= self.max_loops:
            return False
        if last_output is None:
            return True
        return not self.predicate(last_output)


# ============================================
# Fallback
# ============================================

class FallbackStrategy(ABC):
    """step 失败时的处理策略"""

    @abstractmethod
    async def fallback(self, agent: "Agent", agent_input: AgentInput, error: Exception) -> AgentOutput:
        """
        返回替代输出，或抛出异常使 run 失败

        Args:
            agent: 当前 Agent
            agent_input: 失败 step 的输入
            error: step 抛出的异常
        """


class FailFastFallback(FallbackStrategy):
    """直接重新抛出"""

    async def fallback(self, agent, agent_input, error):
        raise error


class RetryFallback(FallbackStrategy):
    """
    重试 step

    重试不会重复追加输入消息，而是从当前历史继续。重试本身失败时异常直接上抛，
    不会再次进入 fallback。
    """

    def __init__(self, max_retries: int = 1):
        self.max_retries = max_retries

    async def fallback(self, agent, agent_input, error):
        if agent.state.retry_count >= self.max_retries:
            logger.warning(f"[{agent.name}] 重试次数已用尽 ({self.max_retries})")
            raise error

        agent.state.retry_count += 1
        logger.info(
            f"[{agent.name}] step 失败，重试 {agent.state.retry_count}/{self.max_retries}：{error}"
        )
        return await agent.step(agent_input.continuation())


class StaticFallback(FallbackStrategy):
    """返回固定文本（或由函数生成）的替代输出"""

    def __init__(self, output: Union[str, Callable[[Exception], str]]):
        self.output = output

    async def fallback(self, agent, agent_input, error):
        text = self.output(error) if callable(self.output) else self.output
        logger.info(f"[{agent.name}] 使用替代输出：{error}")
        return AgentOutput(message=Message.assistant(text), is_fallback=True)
