"""
工具调用解析循环测试

直接驱动 ToolCallingLoop：工具结果顺序、错误工具结果、轮数上限、
压缩接入、usage 累计与 Prompt 构建。

运行测试：
    pytest tests/test_resolution_loop.py -v
"""

import pytest

from agentloop.config import CompressionConfig
from agentloop.core.compressor import ContextCompressor
from agentloop.core.context import ExecutionContext
from agentloop.core.prompt_builder import PromptBuilder
from agentloop.core.resolution import ToolCallingLoop, TurnResult
from agentloop.core.tool_executor import ToolExecutor
from agentloop.errors import AgentExecutionError, ToolLoopExceededError
from agentloop.messages import ConversationHistory, Message, MessageRole
from agentloop.tools import ToolRegistry

from conftest import (
    ScriptedModelClient,
    assert_error_result,
    assert_ok_result,
    make_messages,
    text_response,
    tool_call_response,
    tool_messages,
)


def make_loop(client, tools=(), history=None, **kwargs) -> ToolCallingLoop:
    return ToolCallingLoop(
        model_client=client,
        registry=ToolRegistry(tools),
        history=history if history is not None else ConversationHistory(),
        **kwargs,
    )


# ============================================
# 1. 基本流程
# ============================================

class TestRunTurn:
    """阻塞 turn 测试"""

    @pytest.mark.asyncio
    async def test_text_only_turn(self):
        """测试：无工具调用时一次模型调用结束 turn"""
        client = ScriptedModelClient([text_response("hello", prompt_tokens=7, completion_tokens=3)])
        loop = make_loop(client)
        context = ExecutionContext()

        result = await loop.run_turn([Message.user("hi")], context)

        assert result.message.content == "hello"
        assert result.rounds == 1
        assert result.usage.total_tokens == 10
        assert context.usage.total_tokens == 10
        assert [m.content for m in loop.history.messages] == ["hi", "hello"]

    @pytest.mark.asyncio
    async def test_tool_results_follow_request_order(self, echo_tool, add_tool):
        """测试：每个调用追加一条 tool 消息，按请求顺序"""
        client = ScriptedModelClient([
            tool_call_response(("add", {"a": 1, "b": 2}, "c1"), ("echo", {"text": "x"}, "c2")),
            text_response("done"),
        ])
        loop = make_loop(client, tools=[echo_tool, add_tool])

        result = await loop.run_turn([Message.user("go")], ExecutionContext())

        roles = [m.role for m in loop.history.messages]
        assert roles == [
            MessageRole.USER,
            MessageRole.ASSISTANT,
            MessageRole.TOOL,
            MessageRole.TOOL,
            MessageRole.ASSISTANT,
        ]
        results = tool_messages(loop.history.messages)
        assert [m.tool_results[0].call_id for m in results] == ["c1", "c2"]
        assert_ok_result(results[0], '{"sum": 3}')
        assert_ok_result(results[1], "echo: x")
        assert result.rounds == 2
        assert len(result.tool_results) == 2

    @pytest.mark.asyncio
    async def test_unknown_tool_becomes_error_result(self):
        """测试：未知工具转换为错误工具结果，turn 继续"""
        client = ScriptedModelClient([
            tool_call_response(("does_not_exist", {}, "c1")),
            text_response("ok, no such tool"),
        ])
        loop = make_loop(client)

        result = await loop.run_turn([Message.user("go")], ExecutionContext())

        assert result.message.content == "ok, no such tool"
        assert_error_result(tool_messages(loop.history.messages)[0], "Error: Unknown tool: does_not_exist")

    @pytest.mark.asyncio
    async def test_tool_errors_become_error_results(self, crashing_tool, add_tool):
        """测试：执行失败与参数错误都交还给模型"""
        client = ScriptedModelClient([
            tool_call_response(("crash", {}, "c1"), ("add", "not json", "c2")),
            text_response("handled"),
        ])
        loop = make_loop(client, tools=[crashing_tool, add_tool])

        await loop.run_turn([Message.user("go")], ExecutionContext())

        first, second = tool_messages(loop.history.messages)
        assert_error_result(first, "Call tool crash failed: boom")
        assert_error_result(second, "Invalid input for tool add")
        assert loop.get_stats()["tool_errors"] == 2

    @pytest.mark.asyncio
    async def test_loop_exceeded(self, echo_tool):
        """测试：模型调用次数达到上限时抛出 ToolLoopExceededError"""
        client = ScriptedModelClient([tool_call_response(("echo", {})) for _ in range(5)])
        loop = make_loop(client, tools=[echo_tool], max_tool_rounds=3)

        with pytest.raises(ToolLoopExceededError) as exc_info:
            await loop.run_turn([Message.user("go")], ExecutionContext())

        assert exc_info.value.max_rounds == 3
        assert client.call_count == 3

    def test_invalid_max_rounds(self):
        """测试：max_tool_rounds 必须 >= 1"""
        with pytest.raises(ValueError):
            make_loop(ScriptedModelClient(), max_tool_rounds=0)

    def test_turn_result_without_message(self):
        """测试：没有最终消息的 turn 无法转换为输出"""
        with pytest.raises(AgentExecutionError):
            TurnResult().to_output()


# ============================================
# 2. 历史游标
# ============================================

class TestHistoryCursors:
    """turn 游标测试"""

    @pytest.mark.asyncio
    async def test_turn_cursors(self, echo_tool):
        """测试：turn_start / turn_output_start 标记当前 turn"""
        history = ConversationHistory([Message.user("old"), Message.assistant("old reply")])
        client = ScriptedModelClient([tool_call_response(("echo", {"text": "a"})), text_response("new reply")])
        loop = make_loop(client, tools=[echo_tool], history=history)

        await loop.run_turn([Message.user("new")], ExecutionContext())

        assert history.turn_start == 2
        assert history.turn_output_start == 3
        assert [m.content for m in history.current_turn()][0] == "new"
        assert [m.role for m in history.turn_output()] == [
            MessageRole.ASSISTANT,
            MessageRole.TOOL,
            MessageRole.ASSISTANT,
        ]


# ============================================
# 3. Prompt 与压缩
# ============================================

class TestPromptAndCompression:
    """Prompt 构建与压缩接入测试"""

    @pytest.mark.asyncio
    async def test_prompt_contains_system_and_tools(self, echo_tool):
        """测试：Prompt 包含系统提示、工具 Schema 与选项"""
        client = ScriptedModelClient([text_response("hi")])
        loop = make_loop(
            client,
            tools=[echo_tool],
            prompt_builder=PromptBuilder("You are helpful.", {"model": "test-model", "max_tokens": 100}),
        )

        await loop.run_turn([Message.user("hello")], ExecutionContext())

        prompt = client.prompts[0]
        assert prompt.system == "You are helpful."
        assert [schema["name"] for schema in prompt.tools] == ["echo"]
        assert prompt.options == {"model": "test-model", "max_tokens": 100}

    @pytest.mark.asyncio
    async def test_compression_before_model_call(self):
        """测试：超过预算时先压缩再调用模型，Prompt 使用摘要视图"""
        history = ConversationHistory(make_messages(10))
        client = ScriptedModelClient([text_response("the summary"), text_response("answer")])
        compressor = ContextCompressor(client, CompressionConfig(token_budget=50, reserved_tail_count=2))
        loop = make_loop(
            client,
            history=history,
            compressor=compressor,
            prompt_builder=PromptBuilder("Base prompt."),
        )
        context = ExecutionContext()

        result = await loop.run_turn([Message.user("next question")], context)

        assert result.message.content == "answer"
        prompt = client.prompts[1]
        assert prompt.messages[0].content == "the summary"
        assert prompt.messages[0].metadata["summary"] is True
        assert prompt.messages[-1].content == "next question"
        assert "compressed" in prompt.system
        assert len(history) == 12
        assert loop.get_stats()["compressions"] == 1

    @pytest.mark.asyncio
    async def test_executor_records_calls(self, echo_tool):
        """测试：解析循环的每次调用都写入执行器记录"""
        executor = ToolExecutor()
        client = ScriptedModelClient([
            tool_call_response(("echo", {"text": "1"}, "c1"), ("echo", {"text": "2"}, "c2")),
            text_response("done"),
        ])
        loop = make_loop(client, tools=[echo_tool], executor=executor)

        await loop.run_turn([Message.user("go")], ExecutionContext())

        assert sorted(record.id for record in executor.tracker.records()) == ["c1", "c2"]
