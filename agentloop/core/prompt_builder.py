"""
Prompt Builder

根据会话历史与工具注册表组装模型调用的 Prompt。
"""

from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from ..messages import Message
from ..tools.tool_registry import ToolRegistry
from .context import ExecutionContext
from .model_client import Prompt

logger = logging.getLogger(__name__)


class PromptBuilder:
    """系统提示 + 压缩视图 + 工具 Schema"""

    def __init__(self, system_prompt: str = "", options: Optional[Dict[str, Any]] = None):
        self.system_prompt = system_prompt
        self.options = dict(options or {})

    def build(
        self,
        messages: List[Message],
        registry: Optional[ToolRegistry],
        context: Optional[ExecutionContext] = None,
    ) -> Prompt:
        sections = [self.system_prompt]

        if context is not None and context.is_compressed:
            sections.append(self._compression_section(context))

        system = "\n\n".join(filter(None, sections))
        tools = registry.tool_schemas() if registry is not None else []

        logger.debug(f"构建 Prompt：{len(messages)} 条消息，{len(tools)} 个工具")

        return Prompt(
            system=system,
            messages=list(messages),
            tools=tools,
            options=dict(self.options),
        )

    def _compression_section(self, context: ExecutionContext) -> str:
        last = context.compression_history[-1]
        return (
            "Note: earlier parts of this conversation were compressed into a summary "
            f"({last['removed']} messages summarized)."
        )
