"""
Configuration

Agent 与压缩配置，支持环境变量覆盖；以及日志初始化。

环境变量：
- AGENTLOOP_MODEL / AGENTLOOP_MAX_TOKENS / AGENTLOOP_TEMPERATURE
- AGENTLOOP_MAX_LOOP_COUNT / AGENTLOOP_MAX_TOOL_ROUNDS / AGENTLOOP_MAX_CONCURRENT_TOOLS
- AGENTLOOP_COMPRESSION_ENABLED / AGENTLOOP_TOKEN_BUDGET / AGENTLOOP_RESERVED_TAIL
- AGENTLOOP_LOG_LEVEL
"""

from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from .constants import (
    COMPRESSION_THRESHOLD,
    DEFAULT_COMPRESS_PROMPT,
    DEFAULT_MAX_LOOP_COUNT,
    DEFAULT_MAX_TOOL_ROUNDS,
    DEFAULT_MODEL,
    DEFAULT_RESERVED_TAIL_COUNT,
    DEFAULT_SUMMARY_SYSTEM_PROMPT,
    MAX_CONCURRENT_TOOLS,
    MAX_OUTPUT_TOKENS,
    MAX_TOOL_ARGUMENT_CHARS,
    MAX_TOOL_RESULT_CHARS,
    get_model_context_limit,
)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class CompressionConfig:
    """
    上下文压缩配置
    """

    # 是否启用压缩
    enabled: bool = True

    # token 预算；None 时按模型上下文窗口 * COMPRESSION_THRESHOLD 计算
    token_budget: Optional[int] = None

    # 保留的尾部消息数（不压缩）
    reserved_tail_count: int = DEFAULT_RESERVED_TAIL_COUNT

    # 摘要请求的系统提示与压缩指令
    summary_system_prompt: str = DEFAULT_SUMMARY_SYSTEM_PROMPT
    compress_prompt: Optional[str] = DEFAULT_COMPRESS_PROMPT

    # 摘要前的截断长度
    max_argument_chars: int = MAX_TOOL_ARGUMENT_CHARS
    max_result_chars: int = MAX_TOOL_RESULT_CHARS

    def resolve_budget(self, model: str = DEFAULT_MODEL) -> int:
        if self.token_budget is not None:
            return self.token_budget
        return int(get_model_context_limit(model) * COMPRESSION_THRESHOLD)


@dataclass
class AgentConfig:
    """Agent 配置"""

    model: str = DEFAULT_MODEL
    max_tokens: int = MAX_OUTPUT_TOKENS
    temperature: Optional[float] = None
    system_prompt: str = ""

    # 每次 run 的 step 上限（默认 MaxLoopCount 使用）
    max_loop_count: int = DEFAULT_MAX_LOOP_COUNT

    # 单个 turn 的模型调用上限
    max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS

    # 工具批次的最大并发数
    max_concurrent_tools: int = MAX_CONCURRENT_TOOLS

    compression: CompressionConfig = field(default_factory=CompressionConfig)

    @classmethod
    def from_env(cls, **overrides) -> "AgentConfig":
        """
        从环境变量构建配置，关键字参数优先
        """
        compression = CompressionConfig(
            enabled=_env_bool("AGENTLOOP_COMPRESSION_ENABLED", True),
            token_budget=(
                _env_int("AGENTLOOP_TOKEN_BUDGET", 0) or None
            ),
            reserved_tail_count=_env_int("AGENTLOOP_RESERVED_TAIL", DEFAULT_RESERVED_TAIL_COUNT),
        )
        temperature = os.getenv("AGENTLOOP_TEMPERATURE")
        values = {
            "model": os.getenv("AGENTLOOP_MODEL", DEFAULT_MODEL),
            "max_tokens": _env_int("AGENTLOOP_MAX_TOKENS", MAX_OUTPUT_TOKENS),
            "temperature": _env_float("AGENTLOOP_TEMPERATURE", 0.0) if temperature else None,
            "system_prompt": os.getenv("AGENTLOOP_SYSTEM_PROMPT", ""),
            "max_loop_count": _env_int("AGENTLOOP_MAX_LOOP_COUNT", DEFAULT_MAX_LOOP_COUNT),
            "max_tool_rounds": _env_int("AGENTLOOP_MAX_TOOL_ROUNDS", DEFAULT_MAX_TOOL_ROUNDS),
            "max_concurrent_tools": _env_int("AGENTLOOP_MAX_CONCURRENT_TOOLS", MAX_CONCURRENT_TOOLS),
            "compression": compression,
        }
        values.update(overrides)
        return cls(**values)

    def model_options(self) -> dict:
        """传给模型适配器的选项"""
        options = {"model": self.model, "max_tokens": self.max_tokens}
        if self.temperature is not None:
            options["temperature"] = self.temperature
        return options


def configure_logging(level: Optional[str] = None):
    """
    初始化日志

    Args:
        level: 日志级别；缺省读取 AGENTLOOP_LOG_LEVEL（默认 INFO）
    """
    level_name = (level or os.getenv("AGENTLOOP_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
