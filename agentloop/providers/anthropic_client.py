"""
Anthropic Model Client

ModelClient implementation backed by anthropic.AsyncAnthropic.

- Lifts system-role messages (including compression summaries) into the
  `system` parameter
- Groups consecutive tool results into one user message of tool_result blocks
- Maps streaming content blocks to ModelChunk / ToolCallDelta
- Optional fallback model chain for blocking calls
"""

from __future__ import annotations
import json
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import anthropic

from ..constants import DEFAULT_MODEL, MAX_OUTPUT_TOKENS
from ..core.model_client import ModelChunk, ModelClient, ModelResponse, Prompt, ToolCallDelta
from ..messages import Message, MessageRole, ToolCallRequest, Usage

logger = logging.getLogger(__name__)


def _get_api_key() -> str:
    """
    Resolve the API key

    Priority:
    1. ANTHROPIC_API_KEY
    2. CLAUDE_PROXY_API_KEY (when USE_CLAUDE_PROXY=true)
    """
    if os.getenv("USE_CLAUDE_PROXY", "").lower() in ("true", "1", "yes"):
        api_key = os.getenv("CLAUDE_PROXY_API_KEY")
        if api_key:
            return api_key

    api_key = os.getenv("ANTHROPIC_API_KEY")
    if api_key:
        return api_key

    raise ValueError(
        "API key not found. Set ANTHROPIC_API_KEY, "
        "or CLAUDE_PROXY_API_KEY together with USE_CLAUDE_PROXY=true"
    )


def parse_tool_arguments(arguments: str) -> Dict[str, Any]:
    """Tool-call argument text → input object for tool_use blocks"""
    if not arguments or not arguments.strip():
        return {}
    try:
        value = json.loads(arguments)
    except json.JSONDecodeError:
        return {"input": arguments}
    return value if isinstance(value, dict) else {"input": value}


def to_anthropic_messages(messages: List[Message]) -> Tuple[str, List[Dict[str, Any]]]:
    """
    Convert messages to the Messages API format

    Returns:
        (system text lifted from system-role messages, API messages)
    """
    system_parts: List[str] = []
    converted: List[Dict[str, Any]] = []

    for message in messages:
        if message.role == MessageRole.SYSTEM:
            if message.content:
                system_parts.append(message.content)
            continue

        if message.role == MessageRole.USER:
            if message.media:
                content: Any = [{"type": "text", "text": message.content}] + list(message.media)
            else:
                content = message.content
            converted.append({"role": "user", "content": content})

        elif message.role == MessageRole.ASSISTANT:
            blocks: List[Dict[str, Any]] = []
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            for call in message.tool_calls:
                blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": parse_tool_arguments(call.arguments),
                })
            converted.append({"role": "assistant", "content": blocks or message.content})

        elif message.role == MessageRole.TOOL:
            blocks = [
                {
                    "type": "tool_result",
                    "tool_use_id": result.call_id,
                    "content": result.content,
                    "is_error": result.is_error,
                }
                for result in message.tool_results
            ]
            previous = converted[-1] if converted else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
                and all(block.get("type") == "tool_result" for block in previous["content"])
            ):
                previous["content"].extend(blocks)
            else:
                converted.append({"role": "user", "content": blocks})

    return "\n\n".join(system_parts), converted


def from_anthropic_response(response: Any) -> ModelResponse:
    """Convert an Anthropic Message into a ModelResponse"""
    text_parts: List[str] = []
    tool_calls: List[ToolCallRequest] = []

    for block in response.content:
        if block.type == "text":
            text_parts.append(block.text)
        elif block.type == "tool_use":
            tool_calls.append(ToolCallRequest(
                id=block.id,
                name=block.name,
                arguments=json.dumps(block.input, ensure_ascii=False),
            ))

    usage = Usage()
    if getattr(response, "usage", None) is not None:
        usage = Usage(
            prompt_tokens=response.usage.input_tokens or 0,
            completion_tokens=response.usage.output_tokens or 0,
        )

    return ModelResponse(
        message=Message.assistant("".join(text_parts), tool_calls=tool_calls),
        usage=usage,
        stop_reason=response.stop_reason,
        model=getattr(response, "model", None),
    )


class AnthropicModelClient(ModelClient):
    """
    Anthropic Messages API client
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = MAX_OUTPUT_TOKENS,
        fallback_models: Optional[List[str]] = None,
        timeout: float = 120.0,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        """
        Args:
            api_key: Anthropic API key (defaults to the environment)
            base_url: API base URL (for proxies, defaults to CLAUDE_PROXY_BASE_URL)
            model: Default model
            max_tokens: Default max output tokens
            fallback_models: Models tried in order when a blocking call fails
            timeout: Request timeout in seconds
            client: Pre-built AsyncAnthropic client
        """
        self.model = model
        self.max_tokens = max_tokens
        self.fallback_models = list(fallback_models or [])

        if client is None:
            client_kwargs: Dict[str, Any] = {
                "api_key": api_key or _get_api_key(),
                "timeout": timeout,
            }
            base_url = base_url or os.getenv("CLAUDE_PROXY_BASE_URL")
            if base_url:
                client_kwargs["base_url"] = base_url
            client = anthropic.AsyncAnthropic(**client_kwargs)

        self.client = client

        self._stats = {
            "requests": 0,
            "successful": 0,
            "failed": 0,
            "fallback_used": 0,
        }

        logger.info(f"AnthropicModelClient initialized: model={model}")

    def _request_kwargs(self, prompt: Prompt, model: Optional[str] = None) -> Dict[str, Any]:
        lifted_system, messages = to_anthropic_messages(prompt.messages)
        system = "\n\n".join(filter(None, [prompt.system, lifted_system]))

        options = dict(prompt.options)
        kwargs: Dict[str, Any] = {
            "model": model or options.pop("model", None) or self.model,
            "max_tokens": options.pop("max_tokens", None) or self.max_tokens,
            "messages": messages,
        }
        options.pop("model", None)
        if system:
            kwargs["system"] = system
        if prompt.tools:
            kwargs["tools"] = prompt.tools
        kwargs.update(options)
        return kwargs

    async def call(self, prompt: Prompt) -> ModelResponse:
        kwargs = self._request_kwargs(prompt)
        models = [kwargs["model"]] + [m for m in self.fallback_models if m != kwargs["model"]]

        last_error: Optional[Exception] = None
        for index, model in enumerate(models):
            kwargs["model"] = model
            self._stats["requests"] += 1
            try:
                response = await self.client.messages.create(**kwargs)
            except anthropic.APIError as e:
                self._stats["failed"] += 1
                last_error = e
                logger.warning(f"Anthropic API error on {model}: {e}")
                continue

            self._stats["successful"] += 1
            if index > 0:
                self._stats["fallback_used"] += 1
                logger.info(f"Fallback model used: {model}")
            return from_anthropic_response(response)

        raise last_error

    async def stream(self, prompt: Prompt) -> AsyncIterator[ModelChunk]:
        kwargs = self._request_kwargs(prompt)
        block_ids: Dict[int, str] = {}

        self._stats["requests"] += 1
        try:
            async with self.client.messages.stream(**kwargs) as stream:
                async for event in stream:
                    chunk = self._parse_stream_event(event, block_ids)
                    if chunk is not None:
                        yield chunk
        except anthropic.APIError as e:
            self._stats["failed"] += 1
            logger.error(f"Anthropic streaming error: {e}")
            raise

        self._stats["successful"] += 1

    def _parse_stream_event(self, event: Any, block_ids: Dict[int, str]) -> Optional[ModelChunk]:
        event_type = getattr(event, "type", None)

        if event_type == "message_start":
            usage = getattr(event.message, "usage", None)
            if usage is not None:
                return ModelChunk(usage=Usage(prompt_tokens=usage.input_tokens or 0))

        elif event_type == "content_block_start":
            block = event.content_block
            if block.type == "tool_use":
                block_ids[event.index] = block.id
                return ModelChunk(tool_calls=[ToolCallDelta(id=block.id, name=block.name)])

        elif event_type == "content_block_delta":
            delta = event.delta
            if delta.type == "text_delta":
                return ModelChunk(text=delta.text)
            if delta.type == "input_json_delta" and event.index in block_ids:
                return ModelChunk(tool_calls=[
                    ToolCallDelta(id=block_ids[event.index], arguments=delta.partial_json)
                ])

        elif event_type == "message_delta":
            usage = getattr(event, "usage", None)
            return ModelChunk(
                usage=Usage(completion_tokens=usage.output_tokens or 0) if usage is not None else None,
                stop_reason=getattr(event.delta, "stop_reason", None),
            )

        return None

    def get_stats(self) -> Dict[str, Any]:
        return {**self._stats, "model": self.model}
