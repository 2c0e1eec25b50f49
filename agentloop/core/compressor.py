"""
Context Compressor

当会话历史的估算 token 数超过预算时，把较早的消息压缩为一条摘要消息。

算法：
1. 估算全部消息的 token 总数；低于预算则不压缩
2. 从尾部向前扫描 reserved_tail_count 条消息，确定分割位置
   - 保留的尾部只会变长不会变短
   - 尾部不能以 tool 结果开头（会带上对应的 assistant 工具调用）
3. 被移除的消息中，工具参数截断到 60 字符、工具结果截断到 100 字符
4. 发起一次摘要请求，摘要作为单条 system 消息放在保留尾部之前

摘要请求失败会抛出 CompressionError，不会静默丢弃历史。
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ..config import CompressionConfig
from ..constants import TRUNCATION_SUFFIX, estimate_token_count
from ..errors import CompressionError
from ..messages import (
    ConversationHistory,
    Message,
    MessageRole,
    ToolCallRequest,
    ToolCallResult,
    count_tokens,
)
from .context import ExecutionContext
from .model_client import ModelClient, Prompt

logger = logging.getLogger(__name__)


@dataclass
class CompressionDecision:
    """压缩决策（派生值，不保存）"""

    should_compress: bool
    split_index: int
    removed_messages: List[Message] = field(default_factory=list)
    retained_messages: List[Message] = field(default_factory=list)
    total_tokens: int = 0


@dataclass
class CompressionResult:
    """压缩结果"""

    compressed: bool
    summary: Optional[Message] = None
    removed_messages: List[Message] = field(default_factory=list)
    retained_messages: List[Message] = field(default_factory=list)
    compression_ratio: float = 1.0

    @property
    def messages(self) -> List[Message]:
        """替换后的消息列表：摘要 + 保留尾部"""
        if self.summary is None:
            return list(self.retained_messages)
        return [self.summary] + list(self.retained_messages)


def truncate_text(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_SUFFIX


class ContextCompressor:
    """
    上下文压缩器

    decide() 是纯函数；compress() 发起一次摘要请求
    """

    def __init__(
        self,
        model_client: ModelClient,
        config: Optional[CompressionConfig] = None,
        model: Optional[str] = None,
    ):
        """
        初始化压缩器

        Args:
            model_client: 用于摘要请求的模型客户端
            config: 压缩配置
            model: 计算默认预算时参考的模型名
        """
        self.model_client = model_client
        self.config = config or CompressionConfig()
        self.model = model

        self._stats = {
            "checks": 0,
            "compressions": 0,
            "failures": 0,
        }

    @property
    def token_budget(self) -> int:
        if self.model:
            return self.config.resolve_budget(self.model)
        return self.config.resolve_budget()

    # ============================================
    # 决策
    # ============================================

    def decide(
        self,
        messages: List[Message],
        token_budget: Optional[int] = None,
        reserved_tail_count: Optional[int] = None,
    ) -> CompressionDecision:
        """
        判断是否需要压缩并计算分割位置

        Args:
            messages: 当前消息列表
            token_budget: token 预算（缺省使用配置）
            reserved_tail_count: 保留的尾部消息数（缺省使用配置）

        Returns:
            压缩决策
        """
        budget = self.token_budget if token_budget is None else token_budget
        reserved = self.config.reserved_tail_count if reserved_tail_count is None else reserved_tail_count
        messages = list(messages)
        total = count_tokens(messages)

        if total < budget:
            return CompressionDecision(
                should_compress=False,
                split_index=0,
                retained_messages=messages,
                total_tokens=total,
            )

        if reserved >= len(messages):
            logger.debug(
                f"消息数 {len(messages)} 不超过保留数 {reserved}，跳过压缩"
            )
            return CompressionDecision(
                should_compress=False,
                split_index=0,
                retained_messages=messages,
                total_tokens=total,
            )

        # 从尾部向前扫描保留区
        split_index = len(messages)
        tail_tokens = 0
        for index in range(len(messages) - 1, -1, -1):
            if len(messages) - index > max(reserved, 0):
                break
            tail_tokens += messages[index].token_count
            split_index = index

        if tail_tokens > budget:
            logger.warning(
                f"保留的 {reserved} 条尾部消息本身已超过预算 "
                f"({tail_tokens} > {budget})，仍完整保留"
            )

        # 保留区不能以工具结果开头
        while 0 < split_index < len(messages) and messages[split_index].role == MessageRole.TOOL:
            split_index -= 1

        # 分割点之前只剩上一次的摘要时没有可压缩的内容
        if all(message.metadata.get("summary") for message in messages[:split_index]):
            return CompressionDecision(
                should_compress=False,
                split_index=0,
                retained_messages=messages,
                total_tokens=total,
            )

        return CompressionDecision(
            should_compress=True,
            split_index=split_index,
            removed_messages=messages[:split_index],
            retained_messages=messages[split_index:],
            total_tokens=total,
        )

    # ============================================
    # 压缩
    # ============================================

    async def compress(
        self,
        messages: List[Message],
        decision: Optional[CompressionDecision] = None,
    ) -> CompressionResult:
        """
        按决策压缩消息

        Args:
            messages: 当前消息列表
            decision: 预先计算的决策（缺省时调用 decide()）

        Returns:
            压缩结果

        Raises:
            CompressionError: 摘要请求失败
        """
        decision = decision or self.decide(messages)

        if not decision.should_compress:
            return CompressionResult(
                compressed=False,
                retained_messages=decision.retained_messages,
            )

        logger.info(
            f"Token 估算 {decision.total_tokens} 达到预算，开始压缩 "
            f"{len(decision.removed_messages)} 条消息..."
        )

        prompt = self._build_summary_prompt(decision.removed_messages)

        try:
            response = await self.model_client.call(prompt)
        except Exception as e:
            self._stats["failures"] += 1
            logger.error(f"上下文压缩失败: {e}", exc_info=True)
            raise CompressionError(f"Context summarization failed: {e}", cause=e)

        summary = Message.system(response.text, summary=True)
        ratio = estimate_token_count(summary.content) / decision.total_tokens if decision.total_tokens else 0.0

        self._stats["compressions"] += 1
        logger.info(
            f"压缩完成：{len(decision.removed_messages)} 条消息 -> 1 条摘要，"
            f"保留 {len(decision.retained_messages)} 条，压缩比 {ratio:.2%}"
        )

        return CompressionResult(
            compressed=True,
            summary=summary,
            removed_messages=decision.removed_messages,
            retained_messages=decision.retained_messages,
            compression_ratio=ratio,
        )

    async def compress_if_needed(
        self,
        history: ConversationHistory,
        context: Optional[ExecutionContext] = None,
    ) -> Optional[CompressionResult]:
        """
        检查并在需要时压缩会话历史

        Args:
            history: 会话历史（原地推进 context_start 并记录摘要）
            context: 执行上下文（记录压缩历史）

        Returns:
            压缩结果；未压缩时返回 None
        """
        if not self.config.enabled:
            return None

        self._stats["checks"] += 1

        view = history.prompt_view()
        decision = self.decide(view)
        if not decision.should_compress:
            return None

        result = await self.compress(view, decision)
        history.compact(decision.split_index, result.summary)

        if context is not None:
            context.compression_history.append({
                "timestamp": datetime.now().isoformat(),
                "removed": len(result.removed_messages),
                "retained": len(result.retained_messages),
                "original_tokens": decision.total_tokens,
                "compression_ratio": result.compression_ratio,
            })

        return result

    # ============================================
    # 摘要请求
    # ============================================

    def _build_summary_prompt(self, removed: List[Message]) -> Prompt:
        trimmed = [self._trim_message(message) for message in removed]
        transcript = "\n".join(self._render(message) for message in trimmed)

        instruction = transcript
        if self.config.compress_prompt:
            instruction = f"{transcript}\n\n{self.config.compress_prompt}"

        return Prompt(
            system=self.config.summary_system_prompt,
            messages=[Message.user(instruction)],
        )

    def _trim_message(self, message: Message) -> Message:
        """截断工具参数与工具结果"""
        if not message.tool_calls and not message.tool_results:
            return message

        tool_calls = [
            ToolCallRequest(
                id=call.id,
                name=call.name,
                arguments=truncate_text(call.arguments, self.config.max_argument_chars),
            )
            for call in message.tool_calls
        ]
        tool_results = [
            ToolCallResult(
                call_id=result.call_id,
                tool_name=result.tool_name,
                content=truncate_text(result.content, self.config.max_result_chars),
                is_error=result.is_error,
            )
            for result in message.tool_results
        ]
        content = message.content
        if message.role == MessageRole.TOOL:
            content = truncate_text(content, self.config.max_result_chars)

        return Message(
            role=message.role,
            content=content,
            tool_calls=tool_calls,
            tool_results=tool_results,
            message_id=message.message_id,
            timestamp=message.timestamp,
        )

    def _render(self, message: Message) -> str:
        lines = []
        if message.content:
            lines.append(f"[{message.role.value}] {message.content}")
        for call in message.tool_calls:
            lines.append(f"[{message.role.value}] tool call {call.name}({call.arguments})")
        if message.role == MessageRole.TOOL and not message.content:
            for result in message.tool_results:
                lines.append(f"[tool] {result.tool_name}: {result.content}")
        return "\n".join(lines)

    def get_stats(self):
        return dict(self._stats)
