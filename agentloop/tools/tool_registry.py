"""
Tool Registry

名称 → 工具 的注册表。

实现：
1. ToolRegistry：可变注册表，注册/替换/注销并广播变更事件
2. ToolkitToolRegistry：固定 toolkit + 可变覆盖层，toolkit 工具不可移除、不可被遮蔽
3. MixedToolRegistry：按顺序委托给多个子注册表，第一个命中者胜出

写操作整体替换内部字典（copy-on-write），并发读取方不会看到半更新状态。
变更通知在写操作所在线程同步、按注册顺序投递。
"""

from __future__ import annotations
import logging
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Union

from ..errors import (
    DuplicateToolError,
    ToolNotFoundError,
    ToolRemovalError,
    UnsupportedToolOperationError,
)
from ..listeners import ListenerRegistry
from .base import Tool, ToolDefinition, Toolkit

logger = logging.getLogger(__name__)


class ToolChangeType(str, Enum):
    """工具变更类型"""
    ADDED = "added"
    UPDATED = "updated"
    REMOVED = "removed"


ToolChangeListener = Callable[[Tool, ToolChangeType], None]


class ToolRegistry:
    """
    工具注册表

    名称唯一；lookup 对缺失工具返回 ToolNotFoundError 实例而不是抛出
    """

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: Dict[str, Tool] = {}
        self._change_listeners: ListenerRegistry[ToolChangeListener] = ListenerRegistry()

        for item in tools:
            self.register(item)

    # ============================================
    # 写操作
    # ============================================

    def register(self, tool: Tool, replace: bool = False) -> Tool:
        """
        注册工具

        Args:
            tool: 工具
            replace: 同名时是否替换

        Raises:
            DuplicateToolError: 同名工具已存在且 replace=False
        """
        existing = self._tools.get(tool.name)
        if existing is not None and not replace:
            raise DuplicateToolError(tool.name)

        self._tools = {**self._tools, tool.name: tool}

        change = ToolChangeType.UPDATED if existing is not None else ToolChangeType.ADDED
        logger.debug(f"工具已{'替换' if existing is not None else '注册'}：{tool.name}")
        self._notify(tool, change)
        return tool

    def unregister(self, name: str) -> Optional[Tool]:
        """注销工具；不存在时无操作"""
        tool = self._tools.get(name)
        if tool is None:
            return None

        self._tools = {key: value for key, value in self._tools.items() if key != name}

        logger.debug(f"工具已注销：{name}")
        self._notify(tool, ToolChangeType.REMOVED)
        return tool

    # ============================================
    # 读操作
    # ============================================

    def lookup(self, name: str) -> Union[Tool, ToolNotFoundError]:
        """
        按名称查找工具

        Returns:
            工具；不存在时返回 ToolNotFoundError 实例（由调用方决定是否抛出）
        """
        tool = self.get(name)
        if tool is None:
            return ToolNotFoundError(name)
        return tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        """
        Raises:
            ToolNotFoundError: 工具不存在
        """
        found = self.lookup(name)
        if isinstance(found, ToolNotFoundError):
            raise found
        return found

    def list_tools(self) -> List[Tool]:
        return list(self._tools.values())

    def tool_names(self) -> List[str]:
        return [tool.name for tool in self.list_tools()]

    def definitions(self) -> List[ToolDefinition]:
        return [tool.definition for tool in self.list_tools()]

    def tool_schemas(self) -> List[dict]:
        """全部工具的 API Schema"""
        return [definition.to_schema() for definition in self.definitions()]

    def is_tool_concurrency_safe(self, name: str) -> bool:
        tool = self.get(name)
        return tool is not None and tool.concurrency_safe

    # ============================================
    # 变更通知
    # ============================================

    def add_change_listener(self, listener: ToolChangeListener) -> ToolChangeListener:
        return self._change_listeners.register(listener)

    def remove_change_listener(self, listener: ToolChangeListener) -> bool:
        return self._change_listeners.unregister(listener)

    def _notify(self, tool: Tool, change: ToolChangeType):
        self._change_listeners.notify(
            lambda listener: listener(tool, change),
            event=f"tool_{change.value}",
        )

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __len__(self) -> int:
        return len(self.list_tools())

    def __repr__(self) -> str:
        return f"{type(self).__name__}(tools={self.tool_names()})"


class ToolkitToolRegistry(ToolRegistry):
    """
    Toolkit 注册表

    toolkit 内的工具固定不变；额外注册的工具放在覆盖层，
    不能与 toolkit 工具同名。
    """

    def __init__(self, *toolkits: Toolkit, tools: Iterable[Tool] = ()):
        self._toolkit_tools: Dict[str, Tool] = {}
        self.toolkits: List[Toolkit] = []
        for toolkit in toolkits:
            self.add_toolkit(toolkit)
        super().__init__(tools)

    def add_toolkit(self, toolkit: Toolkit):
        """
        Raises:
            DuplicateToolError: toolkit 工具名与已有工具冲突
        """
        for item in toolkit.get_tools():
            if item.name in self._toolkit_tools or item.name in getattr(self, "_tools", {}):
                raise DuplicateToolError(item.name)

        self._toolkit_tools = {
            **self._toolkit_tools,
            **{item.name: item for item in toolkit.get_tools()},
        }
        self.toolkits.append(toolkit)
        logger.info(f"Toolkit 已加载：{toolkit.name} ({len(toolkit.get_tools())} 个工具)")

    def is_toolkit_tool(self, name: str) -> bool:
        return name in self._toolkit_tools

    def register(self, tool: Tool, replace: bool = False) -> Tool:
        if tool.name in self._toolkit_tools:
            raise DuplicateToolError(tool.name)
        return super().register(tool, replace=replace)

    def unregister(self, name: str) -> Optional[Tool]:
        """
        Raises:
            ToolRemovalError: 试图移除 toolkit 工具
        """
        if name in self._toolkit_tools:
            raise ToolRemovalError(f"Toolkit tool cannot be removed: {name}", tool_name=name)
        return super().unregister(name)

    def get(self, name: str) -> Optional[Tool]:
        return self._toolkit_tools.get(name) or self._tools.get(name)

    def list_tools(self) -> List[Tool]:
        return list(self._toolkit_tools.values()) + list(self._tools.values())


class MixedToolRegistry(ToolRegistry):
    """
    组合注册表

    按顺序查询子注册表，第一个命中者胜出；子注册表的变更事件会被转发。
    """

    def __init__(self, *registries: ToolRegistry):
        super().__init__()
        self.registries: List[ToolRegistry] = []
        for registry in registries:
            self.add_registry(registry)

    def add_registry(self, registry: ToolRegistry):
        self.registries = self.registries + [registry]
        registry.add_change_listener(self._forward)

    def remove_registry(self, registry: ToolRegistry) -> bool:
        if registry not in self.registries:
            return False
        self.registries = [item for item in self.registries if item is not registry]
        registry.remove_change_listener(self._forward)
        return True

    def _forward(self, tool: Tool, change: ToolChangeType):
        self._notify(tool, change)

    def register(self, tool: Tool, replace: bool = False) -> Tool:
        raise UnsupportedToolOperationError(
            "MixedToolRegistry does not accept tools directly; register them in a sub-registry",
            tool_name=tool.name,
        )

    def unregister(self, name: str) -> Optional[Tool]:
        for registry in self.registries:
            if registry.get(name) is not None:
                return registry.unregister(name)
        return None

    def get(self, name: str) -> Optional[Tool]:
        for registry in self.registries:
            tool = registry.get(name)
            if tool is not None:
                return tool
        return None

    def list_tools(self) -> List[Tool]:
        seen: Dict[str, Tool] = {}
        for registry in self.registries:
            for item in registry.list_tools():
                seen.setdefault(item.name, item)
        return list(seen.values())
