"""
工具执行管道测试

覆盖 ToolExecutor 的各个阶段：权限、校验、执行、格式化、记录、通知。

运行测试：
    pytest tests/test_tool_executor.py -v
"""

import pytest
from pydantic import BaseModel

from agentloop.constants import PermissionBehavior
from agentloop.errors import (
    AgentInterruptedError,
    ToolArgumentError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolRejectedError,
)
from agentloop.listeners import ToolExecuteListener
from agentloop.tools import FunctionTool, ToolContext, ToolRegistry, tool
from agentloop.core.tool_executor import ToolExecutor, ToolInput


class RecordingListener(ToolExecuteListener):
    def __init__(self):
        self.events = []

    def on_tool_input(self, context, tool, tool_input):
        self.events.append(("input", tool.name))

    def on_tool_output(self, context, tool, tool_input, output):
        self.events.append(("output", tool.name, output))

    def on_tool_exception(self, context, tool, tool_input, error):
        self.events.append(("exception", tool.name, type(error).__name__))


class BrokenListener(ToolExecuteListener):
    def on_tool_input(self, context, tool, tool_input):
        raise RuntimeError("input listener failure")

    def on_tool_output(self, context, tool, tool_input, output):
        raise RuntimeError("output listener failure")

    def on_tool_exception(self, context, tool, tool_input, error):
        raise RuntimeError("exception listener failure")


class WeatherInput(BaseModel):
    city: str
    days: int = 1


@pytest.fixture
def executor():
    return ToolExecutor()


@pytest.fixture
def context():
    return ToolContext(agent_name="tester", session_id="session-1", call_id="call-1")


# ============================================
# 1. 文本调用
# ============================================

class TestExecuteText:
    """文本调用测试"""

    @pytest.mark.asyncio
    async def test_success(self, executor, context, add_tool):
        """测试：成功调用并格式化输出"""
        output = await executor.execute_text(context, add_tool, '{"a": 1, "b": 2}')

        assert output == '{"sum": 3}'

    @pytest.mark.asyncio
    async def test_empty_input_is_empty_object(self, executor, context, echo_tool):
        """测试：空输入视为空对象"""
        output = await executor.execute_text(context, echo_tool, "")

        assert output == "echo: "

    @pytest.mark.asyncio
    async def test_invalid_json_is_argument_error(self, executor, context, add_tool):
        """测试：无法解析的输入抛出 ToolArgumentError"""
        with pytest.raises(ToolArgumentError) as exc_info:
            await executor.execute_text(context, add_tool, "{not json")

        assert exc_info.value.tool_name == "add"

    @pytest.mark.asyncio
    async def test_pydantic_validation_error_is_argument_error(self, executor, context):
        """测试：pydantic 校验失败抛出 ToolArgumentError"""

        @tool(input_model=WeatherInput)
        def weather(city: str, days: int) -> str:
            return f"{city}:{days}"

        with pytest.raises(ToolArgumentError):
            await executor.execute_text(context, weather, '{"days": "many"}')

        assert await executor.execute_text(context, weather, '{"city": "Paris"}') == "Paris:1"

    @pytest.mark.asyncio
    async def test_plain_exception_is_wrapped(self, executor, context, crashing_tool):
        """测试：普通异常被包装为 ToolExecutionError"""
        with pytest.raises(ToolExecutionError) as exc_info:
            await executor.execute_text(context, crashing_tool, "{}")

        assert "Call tool crash failed: boom" in str(exc_info.value)
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_tool_error_passes_through(self, executor, context, failing_tool):
        """测试：工具自己抛出的 ToolError 原样透传"""
        with pytest.raises(ToolExecutionError) as exc_info:
            await executor.execute_text(context, failing_tool, "{}")

        assert str(exc_info.value) == "tool is broken"

    @pytest.mark.asyncio
    async def test_interrupt_passes_through(self, executor, context):
        """测试：工具内部观察到中断时 AgentInterruptedError 原样透传"""

        @tool()
        def watcher(context: ToolContext) -> str:
            context.abort_signal.abort("stop")
            context.abort_signal.raise_if_aborted()
            return "unreachable"

        with pytest.raises(AgentInterruptedError):
            await executor.execute_text(context, watcher, "{}")

    @pytest.mark.asyncio
    async def test_context_is_injected(self, executor, context):
        """测试：签名中声明 context 的函数会收到 ToolContext"""

        @tool()
        def whoami(context: ToolContext) -> str:
            return f"{context.agent_name}/{context.call_id}"

        assert await executor.execute_text(context, whoami, "{}") == "tester/call-1"

    @pytest.mark.asyncio
    async def test_output_conversion_failure(self, executor, context):
        """测试：输出转换失败抛出 ToolExecutionError"""

        def explode(output):
            raise TypeError("not serializable")

        formatted = FunctionTool(lambda: object(), name="odd", output_converter=explode)

        with pytest.raises(ToolExecutionError) as exc_info:
            await executor.execute_text(context, formatted, "{}")

        assert "Cannot convert output of tool odd" in str(exc_info.value)


# ============================================
# 2. 调用记录
# ============================================

class TestToolCallRecords:
    """每次文本调用恰好一条记录"""

    @pytest.mark.asyncio
    async def test_one_record_on_success(self, executor, context, add_tool):
        """测试：成功调用写入一条记录"""
        await executor.execute_text(context, add_tool, '{"a": 2, "b": 2}', call_id="c1")

        records = executor.tracker.records()
        assert len(records) == 1
        assert records[0].id == "c1"
        assert records[0].tool_output == '{"sum": 4}'
        assert records[0].succeeded

    @pytest.mark.asyncio
    async def test_one_record_on_each_failure_kind(self, executor, context, add_tool, crashing_tool):
        """测试：参数错误、执行失败、权限拒绝各写入一条记录"""
        executor.set_permission("echo_denied", PermissionBehavior.DENY)
        denied = FunctionTool(lambda: "x", name="echo_denied")

        with pytest.raises(ToolArgumentError):
            await executor.execute_text(context, add_tool, "[1, 2]", call_id="bad-args")
        with pytest.raises(ToolExecutionError):
            await executor.execute_text(context, crashing_tool, "{}", call_id="crash")
        with pytest.raises(ToolRejectedError):
            await executor.execute_text(context, denied, "{}", call_id="denied")

        records = executor.tracker.records()
        assert [record.id for record in records] == ["bad-args", "crash", "denied"]
        assert all(record.tool_output is None for record in records)
        assert isinstance(records[0].error, ToolArgumentError)
        assert isinstance(records[1].error, ToolExecutionError)
        assert isinstance(records[2].error, ToolRejectedError)

    @pytest.mark.asyncio
    async def test_structured_call_is_not_recorded(self, executor, context, add_tool):
        """测试：结构化调用不写入文本调用记录"""
        output = await executor.execute(context, add_tool, {"a": 1, "b": 1})

        assert output == {"sum": 2}
        assert len(executor.tracker) == 0

    @pytest.mark.asyncio
    async def test_stats(self, executor, context, add_tool, crashing_tool):
        """测试：统计信息"""
        await executor.execute_text(context, add_tool, '{"a": 1, "b": 1}')
        with pytest.raises(ToolExecutionError):
            await executor.execute_text(context, crashing_tool, "{}")

        stats = executor.get_stats()
        assert stats["executed"] == 2
        assert stats["successful"] == 1
        assert stats["failed"] == 1
        assert stats["records"] == 2


# ============================================
# 3. 权限
# ============================================

class TestPermission:
    """权限阶段测试"""

    @pytest.mark.asyncio
    async def test_deny_by_config(self, executor, context, echo_tool):
        """测试：配置为 deny 的工具被拒绝，工具函数不会执行"""
        executor.set_permission("echo", PermissionBehavior.DENY)

        with pytest.raises(ToolRejectedError):
            await executor.execute_text(context, echo_tool, '{"text": "hi"}')

        assert executor.get_stats()["rejected"] == 1

    @pytest.mark.asyncio
    async def test_ask_without_checker_allows(self, executor, context, echo_tool):
        """测试：ask 且没有检查器时放行"""
        executor.set_permission("echo", PermissionBehavior.ASK)

        assert await executor.execute_text(context, echo_tool, '{"text": "hi"}') == "echo: hi"

    @pytest.mark.asyncio
    async def test_async_checker(self, executor, context, echo_tool):
        """测试：异步权限检查器"""
        seen = []

        async def checker(checked_tool, tool_input):
            seen.append((checked_tool.name, tool_input))
            return PermissionBehavior.DENY

        executor.set_permission_checker(checker)

        with pytest.raises(ToolRejectedError):
            await executor.execute_text(context, echo_tool, '{"text": "hi"}')

        assert seen == [("echo", '{"text": "hi"}')]

    @pytest.mark.asyncio
    async def test_checker_failure_rejects(self, executor, context, echo_tool):
        """测试：检查器抛出异常时拒绝执行"""

        def checker(checked_tool, tool_input):
            raise RuntimeError("policy service down")

        executor.set_permission_checker(checker)

        with pytest.raises(ToolRejectedError) as exc_info:
            await executor.execute_text(context, echo_tool, "{}")

        assert "policy service down" in str(exc_info.value)


# ============================================
# 4. 观察者
# ============================================

class TestListeners:
    """工具执行观察者测试"""

    @pytest.mark.asyncio
    async def test_success_events(self, context, echo_tool):
        """测试：成功调用依次通知 input / output"""
        listener = RecordingListener()
        executor = ToolExecutor()
        executor.listeners.register(listener)

        await executor.execute_text(context, echo_tool, '{"text": "a"}')

        assert listener.events == [("input", "echo"), ("output", "echo", "echo: a")]

    @pytest.mark.asyncio
    async def test_failure_events(self, context, crashing_tool):
        """测试：失败调用依次通知 input / exception"""
        listener = RecordingListener()
        executor = ToolExecutor()
        executor.listeners.register(listener)

        with pytest.raises(ToolExecutionError):
            await executor.execute_text(context, crashing_tool, "{}")

        assert listener.events == [("input", "crash"), ("exception", "crash", "ToolExecutionError")]

    @pytest.mark.asyncio
    async def test_broken_listener_does_not_change_outcome(self, context, echo_tool, crashing_tool):
        """测试：抛出异常的观察者不改变调用结果，后续观察者仍被通知"""
        recording = RecordingListener()
        executor = ToolExecutor()
        executor.listeners.register(BrokenListener())
        executor.listeners.register(recording)

        assert await executor.execute_text(context, echo_tool, '{"text": "a"}') == "echo: a"
        with pytest.raises(ToolExecutionError):
            await executor.execute_text(context, crashing_tool, "{}")

        assert len(recording.events) == 4
        assert len(executor.tracker) == 2


# ============================================
# 5. 批量调用
# ============================================

class TestExecuteBatch:
    """批量调用测试"""

    @pytest.mark.asyncio
    async def test_batch_isolates_failures(self, executor, context, echo_tool, crashing_tool):
        """测试：单项失败不影响其它项，结果保持输入顺序"""
        registry = ToolRegistry([echo_tool, crashing_tool])
        inputs = [
            ToolInput("echo", '{"text": "one"}', call_id="1"),
            ToolInput("missing", "{}", call_id="2"),
            ToolInput("crash", "{}", call_id="3"),
            ToolInput("echo", '{"text": "four"}', call_id="4"),
        ]

        outputs = await executor.execute_batch(context, registry, inputs)

        assert [output.tool_input.call_id for output in outputs] == ["1", "2", "3", "4"]
        assert outputs[0].output == "echo: one"
        assert isinstance(outputs[1].error, ToolNotFoundError)
        assert isinstance(outputs[2].error, ToolExecutionError)
        assert outputs[3].success

        # 未找到的工具没有执行，不写入记录
        assert [record.id for record in executor.tracker.records()] == ["1", "3", "4"]
