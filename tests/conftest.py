"""
agentloop 测试配置文件

这个文件包含 pytest fixtures（测试夹具）和断言帮助函数。

关键概念：
- ScriptedModelClient：按脚本依次返回预设响应的假模型客户端，记录每次收到的 Prompt
- stream 模式会把工具参数拆成多个分块，模拟真实的流式响应
"""

import json
import uuid
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest

from agentloop.core.model_client import ModelChunk, ModelClient, ModelResponse, Prompt, ToolCallDelta
from agentloop.errors import ToolExecutionError
from agentloop.messages import Message, MessageRole, ToolCallRequest, Usage
from agentloop.tools.base import FunctionTool, tool


# ============================================
# 假模型客户端
# ============================================

ScriptItem = Union[ModelResponse, Exception]


def text_response(text: str, prompt_tokens: int = 10, completion_tokens: int = 5) -> ModelResponse:
    """只包含文本的模型响应"""
    return ModelResponse(
        message=Message.assistant(text),
        usage=Usage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
        stop_reason="end_turn",
    )


def tool_call_response(*calls: Sequence[Any], text: str = "", prompt_tokens: int = 10, completion_tokens: int = 5) -> ModelResponse:
    """
    请求工具调用的模型响应

    每个 call 是 (tool_name, arguments) 或 (tool_name, arguments, call_id)；
    arguments 为 dict 时序列化为 JSON
    """
    requests = []
    for call in calls:
        name, arguments = call[0], call[1]
        call_id = call[2] if len(call) > 2 else f"call_{uuid.uuid4().hex[:8]}"
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        requests.append(ToolCallRequest(id=call_id, name=name, arguments=arguments))

    return ModelResponse(
        message=Message.assistant(text, tool_calls=requests),
        usage=Usage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
        stop_reason="tool_use",
    )


class ScriptedModelClient(ModelClient):
    """
    按脚本返回响应的模型客户端

    脚本项可以是 ModelResponse 或异常（调用时抛出）。脚本用完后抛出 AssertionError，
    防止测试意外进入无限循环。
    """

    def __init__(self, script: Optional[List[ScriptItem]] = None, chunk_size: int = 4):
        self.script: List[ScriptItem] = list(script or [])
        self.prompts: List[Prompt] = []
        self.chunk_size = chunk_size

    def add(self, *items: ScriptItem) -> "ScriptedModelClient":
        self.script.extend(items)
        return self

    def _next(self, prompt: Prompt) -> ModelResponse:
        self.prompts.append(prompt)
        if not self.script:
            raise AssertionError("ScriptedModelClient script exhausted")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    async def call(self, prompt: Prompt) -> ModelResponse:
        return self._next(prompt)

    async def stream(self, prompt: Prompt):
        response = self._next(prompt)
        message = response.message

        text = message.content
        for start in range(0, len(text), self.chunk_size):
            yield ModelChunk(text=text[start:start + self.chunk_size])

        for call in message.tool_calls:
            yield ModelChunk(tool_calls=[ToolCallDelta(id=call.id, name=call.name)])
            for start in range(0, len(call.arguments), self.chunk_size):
                yield ModelChunk(tool_calls=[
                    ToolCallDelta(id=call.id, arguments=call.arguments[start:start + self.chunk_size])
                ])

        yield ModelChunk(usage=response.usage, stop_reason=response.stop_reason)


# ============================================
# 工具 Fixtures
# ============================================

@pytest.fixture
def model_client():
    """空脚本的模型客户端，测试中用 add() 填充"""
    return ScriptedModelClient()


@pytest.fixture
def echo_tool():
    """并发安全的回显工具"""

    @tool(name="echo", concurrency_safe=True, read_only=True)
    async def echo(text: str = "") -> str:
        """Echo the input text"""
        return f"echo: {text}"

    return echo


@pytest.fixture
def add_tool():
    """同步函数工具，返回结构化输出"""

    def add(a: int, b: int) -> Dict[str, int]:
        """Add two integers"""
        return {"sum": a + b}

    return FunctionTool(add, concurrency_safe=True)


@pytest.fixture
def failing_tool():
    """总是失败的工具"""

    @tool(name="always_fail")
    async def always_fail() -> str:
        """A tool that always fails"""
        raise ToolExecutionError("tool is broken", tool_name="always_fail")

    return always_fail


@pytest.fixture
def crashing_tool():
    """抛出普通异常的工具"""

    @tool(name="crash")
    def crash() -> str:
        """A tool that raises a plain exception"""
        raise RuntimeError("boom")

    return crash


# ============================================
# 消息 Fixtures
# ============================================

def make_messages(count: int, size: int = 40) -> List[Message]:
    """交替的 user/assistant 消息，每条 size 个字符"""
    messages = []
    for index in range(count):
        content = f"{index:02d}" + "x" * (size - 2)
        if index % 2 == 0:
            messages.append(Message.user(content))
        else:
            messages.append(Message.assistant(content))
    return messages


# ============================================
# 断言帮助函数
# ============================================

def assert_error_result(message: Message, contains: str = ""):
    """断言消息是错误工具结果"""
    assert message.role == MessageRole.TOOL, f"Expected tool message, got {message.role}"
    assert message.tool_results, "Tool message has no results"
    result = message.tool_results[0]
    assert result.is_error, f"Expected error result, got: {result.content}"
    if contains:
        assert contains in result.content, f"'{contains}' not in '{result.content}'"


def assert_ok_result(message: Message, contains: str = ""):
    """断言消息是成功的工具结果"""
    assert message.role == MessageRole.TOOL, f"Expected tool message, got {message.role}"
    result = message.tool_results[0]
    assert not result.is_error, f"Expected success, got error: {result.content}"
    if contains:
        assert contains in result.content, f"'{contains}' not in '{result.content}'"


def tool_messages(messages: List[Message]) -> List[Message]:
    return [message for message in messages if message.role == MessageRole.TOOL]
