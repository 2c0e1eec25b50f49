"""
Storage Module

会话存储。
"""

from .conversation_store import (
    ConversationStore,
    FileConversationStore,
    InMemoryConversationStore,
    create_conversation_store,
)

__all__ = [
    "ConversationStore",
    "FileConversationStore",
    "InMemoryConversationStore",
    "create_conversation_store",
]
