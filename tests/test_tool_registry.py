"""
工具注册表测试

覆盖 ToolRegistry / ToolkitToolRegistry / MixedToolRegistry：
注册、替换、注销、查找、变更通知。

运行测试：
    pytest tests/test_tool_registry.py -v
"""

import pytest

from agentloop.errors import (
    DuplicateToolError,
    ToolNotFoundError,
    ToolRemovalError,
    UnsupportedToolOperationError,
)
from agentloop.tools import (
    FunctionTool,
    MixedToolRegistry,
    ToolChangeType,
    Toolkit,
    ToolkitToolRegistry,
    ToolRegistry,
    tool,
)


def make_tool(name: str, concurrency_safe: bool = False) -> FunctionTool:
    async def func() -> str:
        return name

    return FunctionTool(func, name=name, description=f"{name} tool", concurrency_safe=concurrency_safe)


# ============================================
# 1. ToolRegistry
# ============================================

class TestToolRegistry:
    """基础注册表测试"""

    def test_register_and_lookup(self):
        """测试：注册后可以按名称查找"""
        registry = ToolRegistry()
        search = make_tool("search")

        registry.register(search)

        assert registry.lookup("search") is search
        assert registry.get("search") is search
        assert "search" in registry
        assert len(registry) == 1

    def test_lookup_missing_returns_error(self):
        """测试：查找不存在的工具返回 ToolNotFoundError 实例而不是抛出"""
        registry = ToolRegistry()

        found = registry.lookup("missing")

        assert isinstance(found, ToolNotFoundError)
        assert found.tool_name == "missing"
        assert "Unknown tool: missing" in str(found)

    def test_require_missing_raises(self):
        """测试：require 对不存在的工具抛出"""
        with pytest.raises(ToolNotFoundError):
            ToolRegistry().require("missing")

    def test_register_duplicate_raises(self):
        """测试：同名注册默认拒绝"""
        registry = ToolRegistry([make_tool("search")])

        with pytest.raises(DuplicateToolError):
            registry.register(make_tool("search"))

    def test_register_replace(self):
        """测试：replace=True 时替换同名工具"""
        registry = ToolRegistry([make_tool("search")])
        replacement = make_tool("search")

        registry.register(replacement, replace=True)

        assert registry.get("search") is replacement
        assert len(registry) == 1

    def test_unregister_missing_is_noop(self):
        """测试：注销不存在的工具无操作"""
        registry = ToolRegistry([make_tool("a")])

        assert registry.unregister("b") is None
        assert registry.tool_names() == ["a"]

    def test_unregister_existing(self):
        """测试：注销已注册的工具"""
        registry = ToolRegistry([make_tool("a"), make_tool("b")])

        removed = registry.unregister("a")

        assert removed is not None and removed.name == "a"
        assert registry.tool_names() == ["b"]

    def test_tool_schemas(self):
        """测试：工具 Schema 格式"""
        registry = ToolRegistry([make_tool("search")])

        schemas = registry.tool_schemas()

        assert schemas == [{
            "name": "search",
            "description": "search tool",
            "input_schema": {"type": "object", "properties": {}},
        }]

    def test_concurrency_safe_flag(self):
        """测试：并发安全标记查询"""
        registry = ToolRegistry([make_tool("safe", concurrency_safe=True), make_tool("unsafe")])

        assert registry.is_tool_concurrency_safe("safe")
        assert not registry.is_tool_concurrency_safe("unsafe")
        assert not registry.is_tool_concurrency_safe("missing")

    def test_decorator_uses_docstring(self):
        """测试：@tool 使用函数 docstring 作为描述"""

        @tool(read_only=True)
        def lookup_city(city: str) -> str:
            """Look up a city"""
            return city

        assert lookup_city.name == "lookup_city"
        assert lookup_city.definition.description == "Look up a city"
        assert lookup_city.definition.read_only


# ============================================
# 2. 变更通知
# ============================================

class TestChangeListeners:
    """变更通知测试"""

    def test_events_in_order(self):
        """测试：ADDED / UPDATED / REMOVED 按操作顺序投递"""
        registry = ToolRegistry()
        events = []
        registry.add_change_listener(lambda t, change: events.append((t.name, change)))

        registry.register(make_tool("a"))
        registry.register(make_tool("a"), replace=True)
        registry.unregister("a")

        assert events == [
            ("a", ToolChangeType.ADDED),
            ("a", ToolChangeType.UPDATED),
            ("a", ToolChangeType.REMOVED),
        ]

    def test_throwing_listener_does_not_break_registration(self):
        """测试：抛出异常的观察者不影响注册，后续观察者仍被通知"""
        registry = ToolRegistry()
        events = []

        def broken(t, change):
            raise RuntimeError("listener failure")

        registry.add_change_listener(broken)
        registry.add_change_listener(lambda t, change: events.append(change))

        registry.register(make_tool("a"))

        assert "a" in registry
        assert events == [ToolChangeType.ADDED]

    def test_remove_listener(self):
        """测试：移除观察者后不再收到事件"""
        registry = ToolRegistry()
        events = []
        listener = registry.add_change_listener(lambda t, change: events.append(change))

        assert registry.remove_change_listener(listener)
        registry.register(make_tool("a"))

        assert events == []

    def test_no_event_for_noop_unregister(self):
        """测试：无操作的注销不发送事件"""
        registry = ToolRegistry()
        events = []
        registry.add_change_listener(lambda t, change: events.append(change))

        registry.unregister("missing")

        assert events == []


# ============================================
# 3. ToolkitToolRegistry
# ============================================

class TestToolkitToolRegistry:
    """Toolkit 注册表测试"""

    def test_toolkit_tools_visible(self):
        """测试：toolkit 工具可以查找"""
        registry = ToolkitToolRegistry(Toolkit("files", [make_tool("read"), make_tool("write")]))

        assert registry.tool_names() == ["read", "write"]
        assert registry.is_toolkit_tool("read")

    def test_toolkit_tool_cannot_be_removed(self):
        """测试：toolkit 工具不可移除"""
        registry = ToolkitToolRegistry(Toolkit("files", [make_tool("read")]))

        with pytest.raises(ToolRemovalError):
            registry.unregister("read")

        assert "read" in registry

    def test_toolkit_tool_cannot_be_shadowed(self):
        """测试：不能注册与 toolkit 工具同名的工具"""
        registry = ToolkitToolRegistry(Toolkit("files", [make_tool("read")]))

        with pytest.raises(DuplicateToolError):
            registry.register(make_tool("read"), replace=True)

    def test_overlay_tools(self):
        """测试：覆盖层工具可以注册和注销"""
        registry = ToolkitToolRegistry(Toolkit("files", [make_tool("read")]))

        registry.register(make_tool("extra"))
        assert registry.tool_names() == ["read", "extra"]

        registry.unregister("extra")
        assert registry.tool_names() == ["read"]

    def test_conflicting_toolkits(self):
        """测试：两个 toolkit 工具名冲突时拒绝加载"""
        registry = ToolkitToolRegistry(Toolkit("a", [make_tool("read")]))

        with pytest.raises(DuplicateToolError):
            registry.add_toolkit(Toolkit("b", [make_tool("read")]))


# ============================================
# 4. MixedToolRegistry
# ============================================

class TestMixedToolRegistry:
    """组合注册表测试"""

    def test_first_match_wins(self):
        """测试：按顺序查询，第一个命中者胜出"""
        first_search = make_tool("search")
        first = ToolRegistry([first_search])
        second = ToolRegistry([make_tool("search"), make_tool("fetch")])

        mixed = MixedToolRegistry(first, second)

        assert mixed.get("search") is first_search
        assert mixed.tool_names() == ["search", "fetch"]

    def test_direct_register_unsupported(self):
        """测试：组合注册表不接受直接注册"""
        mixed = MixedToolRegistry(ToolRegistry())

        with pytest.raises(UnsupportedToolOperationError):
            mixed.register(make_tool("a"))

    def test_unregister_delegates(self):
        """测试：注销委托给持有该工具的子注册表"""
        child = ToolRegistry([make_tool("a")])
        mixed = MixedToolRegistry(child)

        mixed.unregister("a")

        assert "a" not in child

    def test_forwards_child_events(self):
        """测试：子注册表的变更事件被转发"""
        child = ToolRegistry()
        mixed = MixedToolRegistry(child)
        events = []
        mixed.add_change_listener(lambda t, change: events.append((t.name, change)))

        child.register(make_tool("late"))

        assert events == [("late", ToolChangeType.ADDED)]
        assert mixed.get("late") is not None

    def test_remove_registry_stops_forwarding(self):
        """测试：移除子注册表后不再转发事件"""
        child = ToolRegistry()
        mixed = MixedToolRegistry(child)
        events = []
        mixed.add_change_listener(lambda t, change: events.append(change))

        assert mixed.remove_registry(child)
        child.register(make_tool("a"))

        assert events == []
        assert "a" not in mixed
