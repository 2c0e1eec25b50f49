"""
Core Constants Module

运行时技术参数常量与帮助函数。
"""

import math


# ============================================
# 并发与循环限制
# ============================================

# 最大同时执行工具数
MAX_CONCURRENT_TOOLS = 10

# 单个 turn 内最多的模型调用轮数（超过即 ToolLoopExceededError）
DEFAULT_MAX_TOOL_ROUNDS = 25

# 默认每次 run 的 step 次数
DEFAULT_MAX_LOOP_COUNT = 1

# 单次响应最大 Token 数
MAX_OUTPUT_TOKENS = 16384


# ============================================
# 模型配置常量
# ============================================

# 模型最大上下文 Token 数
MODEL_CONTEXT_LIMITS = {
    "claude-3-5-haiku-20241022": 200000,
    "claude-sonnet-4-20250514": 200000,
    "claude-opus-4-5-20251101": 200000,
    "gpt-4o": 128000,
    "gpt-4o-mini": 128000,
}

DEFAULT_MODEL = "claude-sonnet-4-20250514"


# ============================================
# 压缩配置
# ============================================

# 压缩阈值（占上下文窗口的比例）
COMPRESSION_THRESHOLD = 0.92

# 默认保留的尾部消息数（不压缩）
DEFAULT_RESERVED_TAIL_COUNT = 10

# 摘要前工具参数与工具结果的截断长度
MAX_TOOL_ARGUMENT_CHARS = 60
MAX_TOOL_RESULT_CHARS = 100

TRUNCATION_SUFFIX = "..."

DEFAULT_COMPRESS_PROMPT = (
    "Summarize the conversation above so that the work can continue without it. "
    "Keep the user's goals, decisions that were made, tools that were used and "
    "their important results, errors that occurred, and anything still unresolved."
)

DEFAULT_SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful assistant that compresses conversation history into a "
    "concise, faithful summary."
)


# ============================================
# 事件类型
# ============================================

class StreamEventType:
    """流式事件类型"""

    # 模型输出
    MODEL_CHUNK = "model_chunk"
    TEXT_DELTA = "text_delta"

    # 压缩相关
    COMPRESSION_SUCCESS = "compression_success"

    # Token 使用
    TOKEN_USAGE = "token_usage"

    # 工具相关
    TOOL_CALLS = "tool_calls"
    TOOL_RESULT = "tool_result"

    # step 相关
    STEP_START = "step_start"
    STEP_FINISH = "step_finish"

    # 错误
    ERROR = "error"

    # 完成
    TURN_COMPLETE = "turn_complete"
    DONE = "done"


# ============================================
# 权限行为
# ============================================

class PermissionBehavior:
    """
    工具权限行为（三态模型）

    allow/deny/ask
    """

    ALLOW = "allow"   # 允许执行
    DENY = "deny"     # 拒绝执行
    ASK = "ask"       # 询问用户


# ============================================
# 帮助函数
# ============================================

def estimate_token_count(text: str) -> int:
    """
    估算文本的 token 数量

    简单估算：1 token ≈ 4 字符（向上取整）
    """
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def get_model_context_limit(model: str) -> int:
    """获取模型的上下文限制"""
    return MODEL_CONTEXT_LIMITS.get(model, 200000)
