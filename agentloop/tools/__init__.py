"""
Tools Module

工具抽象、注册表与调用追踪。
"""

from .base import (
    FunctionTool,
    Tool,
    ToolContext,
    ToolConverter,
    ToolDefinition,
    Toolkit,
    json_input_converter,
    json_output_converter,
    tool,
)
from .tool_registry import (
    MixedToolRegistry,
    ToolChangeListener,
    ToolChangeType,
    ToolkitToolRegistry,
    ToolRegistry,
)
from .tracker import ToolCallRecord, ToolCallTracker

__all__ = [
    "FunctionTool",
    "Tool",
    "ToolContext",
    "ToolConverter",
    "ToolDefinition",
    "Toolkit",
    "json_input_converter",
    "json_output_converter",
    "tool",
    "MixedToolRegistry",
    "ToolChangeListener",
    "ToolChangeType",
    "ToolkitToolRegistry",
    "ToolRegistry",
    "ToolCallRecord",
    "ToolCallTracker",
]
