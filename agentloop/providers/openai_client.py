"""
OpenAI-Compatible Model Client

ModelClient implementation backed by openai.AsyncOpenAI. Works with the
OpenAI API and with OpenAI-compatible proxies (CLAUDE_PROXY_BASE_URL).
"""

from __future__ import annotations
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI, APIError as OpenAIAPIError

from ..constants import DEFAULT_MODEL, MAX_OUTPUT_TOKENS
from ..core.model_client import ModelChunk, ModelClient, ModelResponse, Prompt, ToolCallDelta
from ..messages import Message, MessageRole, ToolCallRequest, Usage

logger = logging.getLogger(__name__)


def to_openai_messages(system: str, messages: List[Message]) -> List[Dict[str, Any]]:
    """Convert a system prompt and messages to chat.completions format"""
    converted: List[Dict[str, Any]] = []
    if system:
        converted.append({"role": "system", "content": system})

    for message in messages:
        if message.role == MessageRole.SYSTEM:
            converted.append({"role": "system", "content": message.content})

        elif message.role == MessageRole.USER:
            if message.media:
                content: Any = [{"type": "text", "text": message.content}] + list(message.media)
            else:
                content = message.content
            converted.append({"role": "user", "content": content})

        elif message.role == MessageRole.ASSISTANT:
            result: Dict[str, Any] = {
                "role": "assistant",
                "content": message.content or None,
            }
            if message.tool_calls:
                result["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments or "{}"},
                    }
                    for call in message.tool_calls
                ]
            converted.append(result)

        elif message.role == MessageRole.TOOL:
            for tool_result in message.tool_results:
                converted.append({
                    "role": "tool",
                    "tool_call_id": tool_result.call_id,
                    "content": tool_result.content,
                })

    return converted


def to_openai_tools(tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Convert {"name","description","input_schema"} tool schemas to OpenAI format"""
    return [
        {
            "type": "function",
            "function": {
                "name": tool.get("name"),
                "description": tool.get("description", ""),
                "parameters": tool.get("input_schema", {}),
            },
        }
        for tool in tools
    ]


def from_openai_response(response: Any) -> ModelResponse:
    """Convert a chat completion into a ModelResponse"""
    choice = response.choices[0] if response.choices else None
    if not choice:
        raise ValueError("No response from OpenAI API")

    message = choice.message
    tool_calls = [
        ToolCallRequest(
            id=tool_call.id,
            name=tool_call.function.name,
            arguments=tool_call.function.arguments or "",
        )
        for tool_call in (message.tool_calls or [])
    ]

    usage = Usage()
    if getattr(response, "usage", None) is not None:
        usage = Usage(
            prompt_tokens=response.usage.prompt_tokens or 0,
            completion_tokens=response.usage.completion_tokens or 0,
        )

    return ModelResponse(
        message=Message.assistant(message.content or "", tool_calls=tool_calls),
        usage=usage,
        stop_reason=choice.finish_reason,
        model=getattr(response, "model", None),
    )


class OpenAIModelClient(ModelClient):
    """
    OpenAI chat.completions client
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = MAX_OUTPUT_TOKENS,
        timeout: float = 120.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Args:
            api_key: API key (defaults to CLAUDE_PROXY_API_KEY, then OPENAI_API_KEY)
            base_url: API base URL (defaults to CLAUDE_PROXY_BASE_URL, then OPENAI_BASE_URL)
            model: Default model (defaults to CLAUDE_PROXY_MODEL)
            max_tokens: Default max output tokens
            timeout: Request timeout in seconds
            client: Pre-built AsyncOpenAI client
        """
        self.model = model or os.getenv("CLAUDE_PROXY_MODEL") or DEFAULT_MODEL
        self.max_tokens = max_tokens

        if client is None:
            api_key = api_key or os.getenv("CLAUDE_PROXY_API_KEY") or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("CLAUDE_PROXY_API_KEY or OPENAI_API_KEY environment variable not set")
            base_url = base_url or os.getenv("CLAUDE_PROXY_BASE_URL") or os.getenv("OPENAI_BASE_URL")
            client = AsyncOpenAI(api_key=api_key, base_url=base_url or None, timeout=timeout)

        self.client = client

        self._stats = {
            "requests": 0,
            "successful": 0,
            "failed": 0,
        }

        logger.info(f"OpenAIModelClient initialized: model={self.model}")

    def _request_kwargs(self, prompt: Prompt) -> Dict[str, Any]:
        options = dict(prompt.options)
        kwargs: Dict[str, Any] = {
            "model": options.pop("model", None) or self.model,
            "max_tokens": options.pop("max_tokens", None) or self.max_tokens,
            "messages": to_openai_messages(prompt.system, prompt.messages),
        }
        if prompt.tools:
            kwargs["tools"] = to_openai_tools(prompt.tools)
        kwargs.update(options)
        return kwargs

    async def call(self, prompt: Prompt) -> ModelResponse:
        self._stats["requests"] += 1
        try:
            response = await self.client.chat.completions.create(**self._request_kwargs(prompt))
        except OpenAIAPIError as e:
            self._stats["failed"] += 1
            logger.error(f"OpenAI API error: {e}")
            raise

        self._stats["successful"] += 1
        return from_openai_response(response)

    async def stream(self, prompt: Prompt) -> AsyncIterator[ModelChunk]:
        kwargs = self._request_kwargs(prompt)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        # OpenAI only sends the call id on the first delta of each tool call
        call_ids: Dict[int, str] = {}

        self._stats["requests"] += 1
        try:
            stream = await self.client.chat.completions.create(**kwargs)
            async for chunk in stream:
                parsed = self._parse_chunk(chunk, call_ids)
                if parsed is not None:
                    yield parsed
        except OpenAIAPIError as e:
            self._stats["failed"] += 1
            logger.error(f"OpenAI streaming error: {e}")
            raise

        self._stats["successful"] += 1

    def _parse_chunk(self, chunk: Any, call_ids: Dict[int, str]) -> Optional[ModelChunk]:
        usage = None
        if getattr(chunk, "usage", None) is not None:
            usage = Usage(
                prompt_tokens=chunk.usage.prompt_tokens or 0,
                completion_tokens=chunk.usage.completion_tokens or 0,
            )

        if not chunk.choices:
            return ModelChunk(usage=usage) if usage is not None else None

        choice = chunk.choices[0]
        delta = choice.delta
        deltas: List[ToolCallDelta] = []

        for tool_call in (getattr(delta, "tool_calls", None) or []):
            if tool_call.id:
                call_ids[tool_call.index] = tool_call.id
            call_id = call_ids.setdefault(tool_call.index, f"call_{tool_call.index}")
            function = tool_call.function
            deltas.append(ToolCallDelta(
                id=call_id,
                name=function.name if function is not None else None,
                arguments=(function.arguments or "") if function is not None else "",
            ))

        return ModelChunk(
            text=getattr(delta, "content", None) or "",
            tool_calls=deltas,
            usage=usage,
            stop_reason=choice.finish_reason,
        )

    def get_stats(self) -> Dict[str, Any]:
        return {**self._stats, "model": self.model}
