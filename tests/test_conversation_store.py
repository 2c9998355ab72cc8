"""
Tests for the conversation store
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from config.app_config import ChatConfig
from infrastructure.storage.storage_service import MemoryStorageService, StorageKeys
from services.backend_service.models import BackendResult
from services.chat_service.actions import ConversationSelected
from services.chat_service.conversation_store import ConversationStore
from services.chat_service.helpers import create_conversation, create_message
from services.chat_service.models import ChatMode, ErrorKind, LoadStatus, MessageRole

from conftest import SteppingClock


class TestLoadInitialState:
    """Test loading conversations"""

    @pytest.mark.asyncio
    async def test_falls_back_to_backend(self, store, backend):
        """Test the backend is used when nothing is persisted"""
        await backend.create_conversation("From backend")

        state = await store.load_initial_state()

        assert state.status == LoadStatus.READY
        assert [c.title for c in store.conversations] == ["From backend"]
        assert state.current_conversation_id is None

    @pytest.mark.asyncio
    async def test_prefers_storage(self, storage, backend, clock, error_tracker):
        """Test persisted conversations win over the backend"""
        first = ConversationStore(storage, backend, clock=clock, error_tracker=error_tracker)
        conversation_id = first.create_conversation("Persisted")

        backend.list_conversations = AsyncMock()
        second = ConversationStore(storage, backend, clock=clock, error_tracker=error_tracker)
        state = await second.load_initial_state()

        backend.list_conversations.assert_not_called()
        assert state.current_conversation_id == conversation_id
        assert second.current_conversation.title == "Persisted"

    @pytest.mark.asyncio
    async def test_round_trip_is_lossless(self, storage, backend, clock, error_tracker):
        """Test every field survives a save and restore"""
        first = ConversationStore(storage, backend, clock=clock, error_tracker=error_tracker)
        conversation_id = first.create_conversation(mode=ChatMode.RESEARCH)
        first.append_message(conversation_id, create_message("hello there", MessageRole.USER, now=clock()))
        first.append_message(conversation_id, create_message("Hi!", MessageRole.ASSISTANT, now=clock()))
        first.create_conversation("Second")
        first.select_conversation(conversation_id)

        second = ConversationStore(storage, backend, clock=clock, error_tracker=error_tracker)
        await second.load_initial_state()

        assert second.conversations == first.conversations
        assert second.state.current_conversation_id == conversation_id

    @pytest.mark.asyncio
    async def test_corrupt_storage_is_treated_as_absent(self, storage, backend, store):
        """Test unreadable persisted data falls back to the backend"""
        storage.set(StorageKeys.CONVERSATIONS, [{"id": "broken"}])
        await backend.create_conversation("From backend")

        state = await store.load_initial_state()

        assert state.status == LoadStatus.READY
        assert [c.title for c in store.conversations] == ["From backend"]

    @pytest.mark.asyncio
    async def test_backend_failure(self, store, backend):
        """Test a failed listing degrades to an empty usable state"""
        backend.list_conversations = AsyncMock(return_value=BackendResult.fail("Failed to load conversations."))

        state = await store.load_initial_state()

        assert state.status == LoadStatus.LOAD_FAILED
        assert not state.is_loading
        assert state.conversations == {}
        assert state.last_error.kind == ErrorKind.LOAD_FAILED

        conversation_id = store.create_conversation()
        assert store.state.current_conversation_id == conversation_id

    @pytest.mark.asyncio
    async def test_backend_exception(self, store, backend):
        """Test an exception from the backend is recovered as a load failure"""
        backend.list_conversations = AsyncMock(side_effect=RuntimeError("socket closed"))

        state = await store.load_initial_state()

        assert state.status == LoadStatus.LOAD_FAILED
        assert state.last_error.message == "Failed to load conversations."

    @pytest.mark.asyncio
    async def test_concurrent_loads_coalesce(self, store, backend):
        """Test overlapping loads hit the backend once"""
        gate = asyncio.Event()

        async def slow_listing():
            await gate.wait()
            return BackendResult.ok([])

        backend.list_conversations = AsyncMock(side_effect=slow_listing)

        first = asyncio.ensure_future(store.load_initial_state())
        second = asyncio.ensure_future(store.load_initial_state())
        for _ in range(3):
            await asyncio.sleep(0)
        assert store.state.is_loading

        gate.set()
        results = await asyncio.gather(first, second)

        assert backend.list_conversations.await_count == 1
        assert results[0].status == results[1].status == LoadStatus.READY

    @pytest.mark.asyncio
    async def test_capacity_applied_to_loaded_data(self, storage, backend, clock, error_tracker):
        """Test loading more than the cap keeps the most recent"""
        for index in range(5):
            await backend.create_conversation(f"Conversation {index}")
        store = ConversationStore(storage, backend, ChatConfig(max_conversations=3), clock=clock, error_tracker=error_tracker)

        await store.load_initial_state()

        assert len(store.conversations) == 3


class TestConversationOperations:
    """Test create, select and append"""

    def test_create_conversation(self, store, storage):
        """Test a created conversation is current and persisted"""
        conversation_id = store.create_conversation()

        conversation = store.get_conversation(conversation_id)
        assert conversation.title == "New Conversation"
        assert conversation.messages == []
        assert store.state.current_conversation_id == conversation_id
        assert storage.get(StorageKeys.CURRENT_CONVERSATION) == conversation_id
        assert storage.get(StorageKeys.CONVERSATIONS)[0]["id"] == conversation_id

    def test_persisted_shape_uses_iso_timestamps(self, store, storage):
        """Test persisted JSON uses camelCase keys and ISO-8601 dates"""
        store.create_conversation()

        persisted = storage.get(StorageKeys.CONVERSATIONS)[0]
        assert set(persisted) == {"id", "title", "messages", "mode", "createdAt", "updatedAt"}
        assert persisted["createdAt"].startswith("2024-01-01T12:00")

    def test_capacity_on_create(self, storage, backend, error_tracker):
        """Test the 51st conversation evicts the least recently updated"""
        store = ConversationStore(storage, backend, ChatConfig(), clock=SteppingClock(), error_tracker=error_tracker)
        ids = [store.create_conversation() for _ in range(50)]

        newest = store.create_conversation()

        assert len(store.conversations) == 50
        assert ids[0] not in store.state.conversations
        assert newest in store.state.conversations
        assert len(storage.get(StorageKeys.CONVERSATIONS)) == 50

    def test_select_conversation(self, store):
        """Test selecting an existing conversation"""
        first = store.create_conversation()
        store.create_conversation()

        store.select_conversation(first)

        assert store.state.current_conversation_id == first

    def test_select_unknown_is_noop(self, store):
        """Test selecting an unknown id leaves the selection unchanged"""
        current = store.create_conversation()
        listener = Mock()
        store.subscribe(listener)

        store.select_conversation("missing")

        assert store.state.current_conversation_id == current
        listener.assert_not_called()

    def test_append_message_order(self, store, clock):
        """Test messages keep call order"""
        conversation_id = store.create_conversation()
        messages = [create_message(f"message {i}", MessageRole.USER, now=clock()) for i in range(5)]

        for message in messages:
            store.append_message(conversation_id, message)

        assert store.get_conversation(conversation_id).messages == messages

    def test_append_to_unknown_is_noop(self, store, clock):
        """Test appending to an unknown conversation is ignored"""
        store.create_conversation()
        before = store.state

        store.append_message("missing", create_message("hi", MessageRole.USER, now=clock()))

        assert store.state is before

    def test_clear_error_is_idempotent(self, store):
        """Test clearing the error twice"""
        store.clear_error()
        assert store.state.last_error is None
        store.clear_error()
        assert store.state.last_error is None


class TestDeleteConversation:
    """Test local-first deletion"""

    @pytest.mark.asyncio
    async def test_delete_only_conversation_creates_fresh_one(self, store):
        """Test deleting the last conversation leaves a fresh current one"""
        only = store.create_conversation()

        await store.delete_conversation(only)

        assert only not in store.state.conversations
        assert len(store.conversations) == 1
        assert store.state.current_conversation_id == store.conversations[0].id
        assert store.state.last_error is None

    @pytest.mark.asyncio
    async def test_delete_current_selects_most_recent(self, store, clock):
        """Test the most recently updated survivor becomes current"""
        first = store.create_conversation()
        second = store.create_conversation()
        third = store.create_conversation()
        store.append_message(first, create_message("bump", MessageRole.USER, now=clock()))
        store.select_conversation(third)

        await store.delete_conversation(third)

        assert store.state.current_conversation_id == first
        assert second in store.state.conversations

    @pytest.mark.asyncio
    async def test_backend_failure_keeps_local_deletion(self, store, backend):
        """Test a backend failure is reported without rollback"""
        keep = store.create_conversation()
        doomed = store.create_conversation()
        backend.delete_conversation = AsyncMock(return_value=BackendResult.fail("Failed to delete conversation."))

        await store.delete_conversation(doomed)

        assert doomed not in store.state.conversations
        assert store.state.current_conversation_id == keep
        assert store.state.last_error.kind == ErrorKind.DELETE_FAILED
        assert store.state.last_error.conversation_id == doomed

    @pytest.mark.asyncio
    async def test_backend_exception_keeps_local_deletion(self, store, backend):
        """Test an exception from the backend is reported, not raised"""
        doomed = store.create_conversation()
        backend.delete_conversation = AsyncMock(side_effect=ConnectionError("offline"))

        await store.delete_conversation(doomed)

        assert doomed not in store.state.conversations
        assert store.state.last_error.kind == ErrorKind.DELETE_FAILED

    @pytest.mark.asyncio
    async def test_local_only_conversation_deletes_cleanly(self, store, backend):
        """Test a conversation the backend never saw deletes without error"""
        local = store.create_conversation()
        store.create_conversation()

        await store.delete_conversation(local)

        assert store.state.last_error is None

    @pytest.mark.asyncio
    async def test_delete_unknown_is_noop(self, store, backend):
        """Test deleting an unknown id does nothing"""
        store.create_conversation()
        backend.delete_conversation = AsyncMock()

        await store.delete_conversation("missing")

        backend.delete_conversation.assert_not_called()


class TestMetadataUpdates:
    """Test rename and mode changes"""

    @pytest.mark.asyncio
    async def test_rename_mirrors_to_backend(self, store, backend):
        """Test renaming updates locally and on the backend"""
        created = await backend.create_conversation()
        await store.load_initial_state()
        store.select_conversation(created.data.id)

        await store.rename_conversation(created.data.id, "  Trip plans  ")

        assert store.get_conversation(created.data.id).title == "Trip plans"
        remote = await backend.get_conversation(created.data.id)
        assert remote.data.title == "Trip plans"
        assert store.state.last_error is None

    @pytest.mark.asyncio
    async def test_set_mode_bumps_updated_at(self, store):
        """Test changing the mode bumps updated_at"""
        conversation_id = store.create_conversation()
        before = store.get_conversation(conversation_id).updated_at

        await store.set_conversation_mode(conversation_id, ChatMode.DEEPTHINK)

        conversation = store.get_conversation(conversation_id)
        assert conversation.mode == ChatMode.DEEPTHINK
        assert conversation.updated_at > before

    @pytest.mark.asyncio
    async def test_update_failure_sets_error(self, store, backend):
        """Test a failed backend update is surfaced as update_failed"""
        conversation_id = store.create_conversation()
        backend.update_conversation = AsyncMock(return_value=BackendResult.fail("Failed to update conversation."))

        await store.rename_conversation(conversation_id, "Renamed")

        assert store.get_conversation(conversation_id).title == "Renamed"
        assert store.state.last_error.kind == ErrorKind.UPDATE_FAILED


class TestSubscriptionsAndLifecycle:
    """Test listeners, reset and dispose"""

    def test_listener_receives_actions(self, store):
        """Test listeners get the action and the new state"""
        first = store.create_conversation()
        store.create_conversation()
        listener = Mock()
        unsubscribe = store.subscribe(listener)

        store.select_conversation(first)

        action, state = listener.call_args[0]
        assert isinstance(action, ConversationSelected)
        assert state.current_conversation_id == first

        unsubscribe()
        store.create_conversation()
        assert listener.call_count == 1

    def test_failing_listener_does_not_break_dispatch(self, store):
        """Test a listener error is logged and ignored"""
        store.subscribe(Mock(side_effect=RuntimeError("listener bug")))

        conversation_id = store.create_conversation()

        assert store.state.current_conversation_id == conversation_id

    def test_reset_clears_storage(self, store, storage):
        """Test reset forgets conversations in memory and storage"""
        store.create_conversation()

        store.reset()

        assert store.conversations == []
        assert storage.get(StorageKeys.CONVERSATIONS) is None
        assert storage.get(StorageKeys.CURRENT_CONVERSATION) is None

    def test_dispose_ignores_later_dispatches(self, store):
        """Test a disposed store no longer changes"""
        store.dispose()

        store.create_conversation()

        assert store.conversations == []

    def test_storage_failure_does_not_raise(self, backend, clock, error_tracker):
        """Test an unavailable medium degrades silently"""
        storage = MemoryStorageService()
        storage._write = Mock(side_effect=OSError("quota exceeded"))
        store = ConversationStore(storage, backend, clock=clock, error_tracker=error_tracker)

        conversation_id = store.create_conversation()

        assert store.state.current_conversation_id == conversation_id
