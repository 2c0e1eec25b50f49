"""
Providers Module

ModelClient implementations for concrete model APIs.
"""

from .anthropic_client import AnthropicModelClient, from_anthropic_response, to_anthropic_messages
from .openai_client import OpenAIModelClient, from_openai_response, to_openai_messages, to_openai_tools

__all__ = [
    "AnthropicModelClient",
    "from_anthropic_response",
    "to_anthropic_messages",
    "OpenAIModelClient",
    "from_openai_response",
    "to_openai_messages",
    "to_openai_tools",
]
