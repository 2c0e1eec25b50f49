"""
Tool Abstractions

工具定义、输入输出转换器与函数工具。

核心功能：
- ToolDefinition：名称、描述、输入 Schema、并发安全/只读标记
- ToolConverter：文本 → 结构化输入、结构化输出 → 文本 的一对纯函数
- Tool：异步 run(context, tool_input)
- FunctionTool / @tool：把普通函数（同步或异步）包装为工具
- Toolkit：一组固定工具
"""

from __future__ import annotations
import inspect
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel

from ..signals import AbortSignal

logger = logging.getLogger(__name__)


# ============================================
# 执行上下文
# ============================================

@dataclass
class ToolContext:
    """
    工具执行上下文

    每次工具调用时传入，携带调用方信息与中断信号
    """

    # 调用方 Agent 名称
    agent_name: str = ""

    # 会话 ID
    session_id: str = ""

    # 工具调用 ID（由模型分配）
    call_id: Optional[str] = None

    # 中断信号
    abort_signal: AbortSignal = field(default_factory=AbortSignal)

    # 元数据
    metadata: Dict[str, Any] = field(default_factory=dict)

    def for_call(self, call_id: Optional[str]) -> "ToolContext":
        """派生一个绑定到具体调用 ID 的上下文"""
        return ToolContext(
            agent_name=self.agent_name,
            session_id=self.session_id,
            call_id=call_id,
            abort_signal=self.abort_signal,
            metadata=self.metadata,
        )


# ============================================
# 工具定义
# ============================================

def _default_input_schema() -> Dict[str, Any]:
    return {"type": "object", "properties": {}}


@dataclass(frozen=True)
class ToolDefinition:
    """工具的静态描述"""

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=_default_input_schema)
    output_schema: Optional[Dict[str, Any]] = None

    # 所有调用均可与其它并发安全工具同时执行
    concurrency_safe: bool = False

    # 不产生副作用
    read_only: bool = False

    def to_schema(self) -> Dict[str, Any]:
        """转换为模型 API 使用的工具 Schema 格式"""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


# ============================================
# 转换器
# ============================================

def json_input_converter(input_model: Optional[Type[BaseModel]] = None) -> Callable[[str], Any]:
    """
    构造 JSON 文本 → 结构化输入的转换函数

    Args:
        input_model: pydantic 模型；为 None 时返回 dict
    """

    def convert(text: str) -> Any:
        payload = text if text and text.strip() else "{}"
        if input_model is not None:
            return input_model.model_validate_json(payload)
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError(f"Tool input must be a JSON object, got {type(data).__name__}")
        return data

    return convert


def json_output_converter(output: Any) -> str:
    """结构化输出 → 文本"""
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    if isinstance(output, BaseModel):
        return output.model_dump_json()
    return json.dumps(output, ensure_ascii=False, default=str)


class ToolConverter:
    """输入/输出转换函数对"""

    def __init__(
        self,
        input_converter: Optional[Callable[[str], Any]] = None,
        output_converter: Optional[Callable[[Any], str]] = None,
    ):
        self.input_converter = input_converter or json_input_converter()
        self.output_converter = output_converter or json_output_converter

    @classmethod
    def for_model(cls, input_model: Type[BaseModel]) -> "ToolConverter":
        return cls(input_converter=json_input_converter(input_model))


# ============================================
# 工具基类
# ============================================

class Tool(ABC):
    """
    工具基类

    子类提供 definition 并实现 run()
    """

    def __init__(self, definition: ToolDefinition, converter: Optional[ToolConverter] = None):
        self.definition = definition
        self.converter = converter or ToolConverter()

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def concurrency_safe(self) -> bool:
        return self.definition.concurrency_safe

    @abstractmethod
    async def run(self, context: ToolContext, tool_input: Any) -> Any:
        """
        执行工具

        Args:
            context: 工具执行上下文
            tool_input: 已转换的结构化输入

        Returns:
            结构化输出
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class FunctionTool(Tool):
    """
    函数工具

    把函数包装为工具。结构化输入以关键字参数传入；函数签名中声明了
    `context` 参数时会额外传入 ToolContext。
    """

    def __init__(
        self,
        func: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
        input_model: Optional[Type[BaseModel]] = None,
        input_schema: Optional[Dict[str, Any]] = None,
        concurrency_safe: bool = False,
        read_only: bool = False,
        output_converter: Optional[Callable[[Any], str]] = None,
    ):
        if input_schema is None:
            input_schema = (
                input_model.model_json_schema() if input_model is not None
                else _default_input_schema()
            )

        definition = ToolDefinition(
            name=name or func.__name__,
            description=description if description is not None else inspect.cleandoc(func.__doc__ or ""),
            input_schema=input_schema,
            concurrency_safe=concurrency_safe,
            read_only=read_only,
        )
        converter = ToolConverter(
            input_converter=json_input_converter(input_model),
            output_converter=output_converter,
        )
        super().__init__(definition, converter)

        self.func = func
        self.input_model = input_model
        self._wants_context = "context" in inspect.signature(func).parameters

    async def run(self, context: ToolContext, tool_input: Any) -> Any:
        if isinstance(tool_input, BaseModel):
            kwargs = {name: getattr(tool_input, name) for name in type(tool_input).model_fields}
        else:
            kwargs = dict(tool_input or {})

        if self._wants_context:
            kwargs["context"] = context

        result = self.func(**kwargs)

        # 如果是异步函数，await 它
        if hasattr(result, "__await__"):
            result = await result

        return result


def tool(
    name: Optional[str] = None,
    description: Optional[str] = None,
    input_model: Optional[Type[BaseModel]] = None,
    concurrency_safe: bool = False,
    read_only: bool = False,
) -> Callable[[Callable[..., Any]], FunctionTool]:
    """
    装饰器：把函数声明为工具

    使用方式：
    ```python
    @tool(concurrency_safe=True, read_only=True)
    async def get_weather(city: str) -> str:
        '''Look up the weather'''
        ...
    ```
    """

    def decorator(func: Callable[..., Any]) -> FunctionTool:
        return FunctionTool(
            func,
            name=name,
            description=description,
            input_model=input_model,
            concurrency_safe=concurrency_safe,
            read_only=read_only,
        )

    return decorator


class Toolkit:
    """一组固定的工具"""

    def __init__(self, name: str, tools: Iterable[Tool]):
        self.name = name
        self.tools: List[Tool] = list(tools)

    def get_tools(self) -> List[Tool]:
        return list(self.tools)

    def __repr__(self) -> str:
        return f"Toolkit(name={self.name!r}, tools={[t.name for t in self.tools]})"
