"""
Tests for conversation and message persistence.
"""

import pytest

from branchchat.errors import NotFoundError
from branchchat.models.message import MessageRole, MessageStatus


class TestConversations:
    """Tests for conversation operations."""

    @pytest.mark.asyncio
    async def test_create_defaults(self, store):
        conversation = await store.create_conversation()

        assert conversation.title == "New Chat"
        assert conversation.model == "gpt-4o-mini"
        assert len(conversation.conversation_id) == 36
        assert await store.list_messages(conversation.id) == []

    @pytest.mark.asyncio
    async def test_create_with_system_prompt(self, store):
        """A system prompt becomes the root SYSTEM message."""
        conversation = await store.create_conversation(title="Notes", system_prompt="Be terse.")
        messages = await store.list_messages(conversation.id)

        assert len(messages) == 1
        assert messages[0].role == MessageRole.SYSTEM
        assert messages[0].content == "Be terse."
        assert messages[0].parent_id is None

    @pytest.mark.asyncio
    async def test_list_most_recently_updated_first(self, store):
        first = await store.create_conversation(title="first")
        second = await store.create_conversation(title="second")

        listed = await store.list_conversations()
        assert [c.conversation_id for c in listed] == [second.conversation_id, first.conversation_id]

        await store.touch_conversation(first.id)
        listed = await store.list_conversations()
        assert listed[0].conversation_id == first.conversation_id

    @pytest.mark.asyncio
    async def test_update_ignores_none(self, store):
        conversation = await store.create_conversation(title="Old", model="gpt-4o")
        updated = await store.update_conversation(conversation.conversation_id, title="New", model=None)

        assert updated.title == "New"
        assert updated.model == "gpt-4o"

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.update_conversation("missing", title="x")

    @pytest.mark.asyncio
    async def test_require_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.require_conversation("missing")

    @pytest.mark.asyncio
    async def test_delete_removes_messages(self, store):
        conversation = await store.create_conversation(system_prompt="sys")
        await store.create_message(conversation.id, role=MessageRole.USER, content="hi", status=MessageStatus.COMPLETE)

        assert await store.delete_conversation(conversation.conversation_id) is True
        assert await store.get_conversation(conversation.conversation_id) is None
        assert await store.list_messages(conversation.id) == []
        assert await store.delete_conversation(conversation.conversation_id) is False


class TestMessages:
    """Tests for message operations and branch linkage."""

    @pytest.mark.asyncio
    async def test_list_in_creation_order_and_by_role(self, store, conversation):
        for i, role in enumerate([MessageRole.USER, MessageRole.ASSISTANT, MessageRole.USER]):
            await store.create_message(conversation.id, role=role, content=str(i), status=MessageStatus.COMPLETE)

        messages = await store.list_messages(conversation.id)
        assert [m.content for m in messages] == ["0", "1", "2"]

        users = await store.list_messages(conversation.id, role=MessageRole.USER)
        assert [m.content for m in users] == ["0", "2"]

    @pytest.mark.asyncio
    async def test_latest_non_user_message(self, store):
        conversation = await store.create_conversation(system_prompt="sys")
        latest = await store.latest_non_user_message(conversation.id)
        assert latest.role == MessageRole.SYSTEM

        user = await store.create_message(conversation.id, role=MessageRole.USER, content="q", status=MessageStatus.COMPLETE)
        answer = await store.create_message(
            conversation.id, role=MessageRole.ASSISTANT, content="a",
            status=MessageStatus.COMPLETE, parent_id=user.message_id
        )
        await store.create_message(conversation.id, role=MessageRole.USER, content="q2", status=MessageStatus.COMPLETE)

        latest = await store.latest_non_user_message(conversation.id)
        assert latest.message_id == answer.message_id

    @pytest.mark.asyncio
    async def test_next_variant_index(self, store, conversation):
        user = await store.create_message(conversation.id, role=MessageRole.USER, content="q", status=MessageStatus.COMPLETE)
        assert await store.next_variant_index(conversation.id, user.message_id) == 0

        for index in (0, 1):
            await store.create_message(
                conversation.id, role=MessageRole.ASSISTANT, status=MessageStatus.COMPLETE,
                parent_id=user.message_id, variant_index=index
            )
        assert await store.next_variant_index(conversation.id, user.message_id) == 2
        assert await store.count_assistant_messages(conversation.id) == 2

    @pytest.mark.asyncio
    async def test_checkpoint_only_touches_streaming_rows(self, store, conversation):
        streaming = await store.create_message(conversation.id, role=MessageRole.ASSISTANT, status=MessageStatus.STREAMING)
        done = await store.create_message(
            conversation.id, role=MessageRole.ASSISTANT, content="final", status=MessageStatus.COMPLETE
        )

        await store.checkpoint(streaming.message_id, "partial", 3)
        await store.checkpoint(done.message_id, "stale", 1)

        reloaded = await store.get_message(streaming.message_id)
        assert reloaded.content == "partial"
        assert reloaded.completion_tokens == 3
        assert reloaded.status == MessageStatus.STREAMING
        assert (await store.get_message(done.message_id)).content == "final"

    @pytest.mark.asyncio
    async def test_interrupt_streaming_children(self, store, conversation):
        user = await store.create_message(conversation.id, role=MessageRole.USER, content="q", status=MessageStatus.COMPLETE)
        live = await store.create_message(
            conversation.id, role=MessageRole.ASSISTANT, status=MessageStatus.STREAMING, parent_id=user.message_id
        )
        finished = await store.create_message(
            conversation.id, role=MessageRole.ASSISTANT, status=MessageStatus.COMPLETE, parent_id=user.message_id
        )

        count = await store.interrupt_streaming_children(conversation.id, user.message_id, "user_edited_prompt")

        assert count == 1
        live = await store.get_message(live.message_id)
        assert live.status == MessageStatus.INTERRUPTED
        assert live.finish_reason == "user_edited_prompt"
        assert (await store.get_message(finished.message_id)).status == MessageStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_delete_message(self, store, conversation):
        message = await store.create_message(conversation.id, role=MessageRole.USER, content="q", status=MessageStatus.COMPLETE)

        assert await store.delete_message(message.message_id) is True
        assert await store.get_message(message.message_id) is None
        assert await store.delete_message(message.message_id) is False
