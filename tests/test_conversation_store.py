"""
会话存储测试

运行测试：
    pytest tests/test_conversation_store.py -v
"""

import json

import pytest

from agentloop.messages import Message, MessageRole, ToolCallRequest, ToolCallResult
from agentloop.storage import (
    FileConversationStore,
    InMemoryConversationStore,
    create_conversation_store,
)


@pytest.fixture
def conversation():
    call = ToolCallRequest(id="c1", name="search", arguments='{"q": "天气"}')
    return [
        Message.system("summary text", summary=True),
        Message.user("look it up", media=[{"type": "image", "source": {"type": "url", "url": "https://example.com/a.png"}}]),
        Message.assistant("", tool_calls=[call]),
        Message.tool(ToolCallResult(call_id="c1", tool_name="search", content="晴", is_error=False)),
        Message.assistant("It is sunny."),
    ]


class TestInMemoryConversationStore:
    """内存存储测试"""

    def test_store_and_load(self, conversation):
        """测试：保存后加载得到相同的消息"""
        store = InMemoryConversationStore()

        store.store("conv", conversation)

        assert store.load("conv") == conversation
        assert store.list_conversations() == ["conv"]

    def test_missing_is_empty(self):
        """测试：不存在的会话返回空列表"""
        assert InMemoryConversationStore().load("missing") == []

    def test_store_copies_list(self, conversation):
        """测试：保存的是快照，调用方后续修改不影响存储"""
        store = InMemoryConversationStore()
        store.store("conv", conversation)

        conversation.append(Message.user("later"))

        assert len(store.load("conv")) == 5

    def test_delete(self, conversation):
        """测试：删除会话"""
        store = InMemoryConversationStore()
        store.store("conv", conversation)

        assert store.delete("conv")
        assert not store.delete("conv")
        assert store.load("conv") == []


class TestFileConversationStore:
    """文件存储测试"""

    def test_store_and_load(self, tmp_path, conversation):
        """测试：消息的角色、工具调用、工具结果、元数据都能恢复"""
        store = FileConversationStore(tmp_path)

        store.store("conv-1", conversation)
        loaded = store.load("conv-1")

        assert [m.role for m in loaded] == [m.role for m in conversation]
        assert [m.message_id for m in loaded] == [m.message_id for m in conversation]
        assert loaded[0].metadata == {"summary": True}
        assert loaded[1].media == conversation[1].media
        assert loaded[2].tool_calls[0].arguments == '{"q": "天气"}'
        assert loaded[3].role == MessageRole.TOOL
        assert loaded[3].tool_results[0].content == "晴"
        assert loaded[4].timestamp == conversation[4].timestamp

    def test_file_layout(self, tmp_path, conversation):
        """测试：每个会话一个 JSON 文件，不留临时文件"""
        store = FileConversationStore(tmp_path)

        store.store("conv-1", conversation)

        files = sorted(path.name for path in tmp_path.iterdir())
        assert files == ["conv-1.json"]
        data = json.loads((tmp_path / "conv-1.json").read_text(encoding="utf-8"))
        assert data["conversation_id"] == "conv-1"
        assert len(data["messages"]) == 5

    def test_unsafe_ids_are_sanitized(self, tmp_path, conversation):
        """测试：会话 ID 中的路径字符被替换"""
        store = FileConversationStore(tmp_path)

        store.store("../escape", conversation)

        assert (tmp_path / ".._escape.json").exists()
        assert store.list_conversations() == ["../escape"]
        assert len(store.load("../escape")) == 5

    def test_missing_and_delete(self, tmp_path, conversation):
        """测试：不存在的会话返回空列表，删除后不可加载"""
        store = FileConversationStore(tmp_path)
        assert store.load("nope") == []

        store.store("conv", conversation)
        assert store.delete("conv")
        assert store.load("conv") == []
        assert not store.delete("conv")

    def test_factory(self, tmp_path):
        """测试：工厂函数按路径选择实现"""
        assert isinstance(create_conversation_store(), InMemoryConversationStore)
        assert isinstance(create_conversation_store(str(tmp_path / "store")), FileConversationStore)
