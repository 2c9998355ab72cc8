"""
Conversation store - owns the conversation collection.

All mutations go through dispatch(), which runs the reducer, persists the
collection when it changed and notifies subscribers.
"""

import asyncio
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from pydantic import ValidationError

from config.app_config import ChatConfig
from infrastructure.monitoring.logging_service import ErrorTracker, get_error_tracker, get_logger, log_conversation_event
from infrastructure.storage.storage_service import StorageKeys, StorageService
from services.backend_service.client import ChatBackend
from services.backend_service.models import BackendResult
from services.chat_service.actions import (
    ChatAction,
    ConversationAdded,
    ConversationRemoved,
    ConversationSelected,
    ConversationUpdated,
    ErrorCleared,
    ErrorRaised,
    LoadFailed,
    LoadStarted,
    LoadSucceeded,
    MessageAppended,
    StateReset,
    chat_reducer,
)
from services.chat_service.errors import FAILED_TO_DELETE, FAILED_TO_LOAD, FAILED_TO_UPDATE
from services.chat_service.helpers import create_conversation, utc_now
from services.chat_service.models import ChatError, ChatMode, ChatState, Conversation, ErrorKind, Message

Listener = Callable[[ChatAction, ChatState], None]


class ConversationStore:
    """
    Single owner of conversations, the current selection and the error slot.

    Lifecycle: construct, await load_initial_state(), use, dispose().
    """

    def __init__(
        self,
        storage: StorageService,
        backend: ChatBackend,
        config: Optional[ChatConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        error_tracker: Optional[ErrorTracker] = None
    ):
        self.logger = get_logger(__name__)
        self.storage = storage
        self.backend = backend
        self.config = config or ChatConfig()
        self.clock = clock
        self.error_tracker = error_tracker or get_error_tracker()

        self._state = ChatState()
        self._listeners: List[Listener] = []
        self._load_task: Optional[asyncio.Task] = None
        self._disposed = False

    # ----- read access -----

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def conversations(self) -> List[Conversation]:
        """Conversations, most recently updated first"""
        return self._state.ordered_conversations()

    @property
    def current_conversation(self) -> Optional[Conversation]:
        return self._state.current_conversation

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self._state.get(conversation_id)

    # ----- dispatch -----

    def dispatch(self, action: ChatAction) -> ChatState:
        """Apply an action, persist the collection if it changed and notify listeners"""
        if self._disposed:
            self.logger.warning(f"Ignoring {type(action).__name__} on a disposed conversation store")
            return self._state

        previous = self._state
        state = chat_reducer(previous, action, self.config)
        if state is previous:
            return state

        self._state = state
        if (
            state.conversations is not previous.conversations
            or state.current_conversation_id != previous.current_conversation_id
        ):
            self._persist(state)

        self._notify(action, state)
        return state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called with (action, state) after every change

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, action: ChatAction, state: ChatState):
        for listener in list(self._listeners):
            try:
                listener(action, state)
            except Exception as e:
                self.logger.error(f"Conversation store listener failed on {type(action).__name__}: {e}")

    # ----- persistence -----

    def _persist(self, state: ChatState):
        self.storage.set(
            StorageKeys.CONVERSATIONS,
            [conversation.to_storage() for conversation in state.ordered_conversations()]
        )
        if state.current_conversation_id is None:
            self.storage.remove(StorageKeys.CURRENT_CONVERSATION)
        else:
            self.storage.set(StorageKeys.CURRENT_CONVERSATION, state.current_conversation_id)

    def _read_persisted(self) -> Optional[Tuple[List[Conversation], Optional[str]]]:
        """Persisted conversations and selection, or None when absent or unreadable"""
        raw = self.storage.get(StorageKeys.CONVERSATIONS)
        if raw is None:
            return None

        if not isinstance(raw, list):
            self.logger.warning("Persisted conversations are not a list, ignoring them")
            return None

        try:
            conversations = [Conversation.model_validate(item) for item in raw]
        except ValidationError as e:
            self.logger.warning(f"Persisted conversations are corrupt, ignoring them: {e.error_count()} errors")
            return None

        current_id = self.storage.get(StorageKeys.CURRENT_CONVERSATION)
        if not isinstance(current_id, str):
            current_id = None

        return conversations, current_id

    # ----- operations -----

    async def load_initial_state(self) -> ChatState:
        """
        Load conversations from storage, falling back to the backend

        Concurrent calls share the load already in flight.

        Returns:
            ChatState after the load settled
        """
        if self._load_task is not None and not self._load_task.done():
            self.logger.debug("Load already in progress, joining it")
            return await asyncio.shield(self._load_task)

        self._load_task = asyncio.ensure_future(self._load())
        return await self._load_task

    async def _load(self) -> ChatState:
        self.dispatch(LoadStarted())
        try:
            persisted = self._read_persisted()
            if persisted is not None:
                conversations, current_id = persisted
                self.logger.info(f"Restored {len(conversations)} conversations from storage")
            else:
                result = await self.backend.list_conversations()
                if not result.success:
                    return self._fail_load(result.message or FAILED_TO_LOAD)
                conversations, current_id = list(result.data or []), None
                self.logger.info(f"Loaded {len(conversations)} conversations from backend")

            return self.dispatch(LoadSucceeded(tuple(conversations), current_id))

        except Exception as e:
            self.error_tracker.track_error(e, "load_initial_state")
            return self.dispatch(LoadFailed(ChatError(ErrorKind.LOAD_FAILED, FAILED_TO_LOAD)))

    def _fail_load(self, message: str) -> ChatState:
        self.error_tracker.track_failure(ErrorKind.LOAD_FAILED.value, message, "load_initial_state")
        return self.dispatch(LoadFailed(ChatError(ErrorKind.LOAD_FAILED, message)))

    def create_conversation(self, initial_title: Optional[str] = None, mode: ChatMode = ChatMode.NORMAL) -> str:
        """
        Create an empty conversation and make it current

        Returns:
            Id of the new conversation
        """
        conversation = create_conversation(
            title=initial_title or self.config.default_title,
            mode=mode,
            now=self.clock()
        )
        self.dispatch(ConversationAdded(conversation))
        log_conversation_event(self.logger, "created", conversation.id, title=conversation.title)
        return conversation.id

    def select_conversation(self, conversation_id: str):
        """Make a conversation current; unknown ids are ignored"""
        if conversation_id not in self._state.conversations:
            self.logger.debug(f"Ignoring selection of unknown conversation {conversation_id}")
            return
        self.dispatch(ConversationSelected(conversation_id))

    def append_message(self, conversation_id: str, message: Message):
        """Append a message; unknown conversation ids are ignored"""
        if conversation_id not in self._state.conversations:
            self.logger.debug(f"Dropping message {message.id} for unknown conversation {conversation_id}")
            return
        self.dispatch(MessageAppended(conversation_id, message, self.clock()))
        log_conversation_event(self.logger, "message_added", conversation_id, role=message.role.value)

    async def delete_conversation(self, conversation_id: str):
        """
        Delete a conversation locally, then on the backend

        The local removal is never rolled back; a backend failure is reported
        through last_error.
        """
        if conversation_id not in self._state.conversations:
            self.logger.debug(f"Ignoring deletion of unknown conversation {conversation_id}")
            return

        self.dispatch(ConversationRemoved(conversation_id))
        log_conversation_event(self.logger, "deleted", conversation_id)

        if not self._state.conversations:
            self.create_conversation()

        result = await self._call_backend(
            "delete_conversation",
            lambda: self.backend.delete_conversation(conversation_id),
            FAILED_TO_DELETE
        )
        self._report(result, ErrorKind.DELETE_FAILED, conversation_id, "delete_conversation")

    async def rename_conversation(self, conversation_id: str, title: str):
        """Change a conversation title locally and mirror it to the backend"""
        title = title.strip()[:self.config.title_max_length] or self.config.default_title
        await self._update_metadata(conversation_id, title=title)

    async def set_conversation_mode(self, conversation_id: str, mode: ChatMode):
        """Change the response mode used for future sends into a conversation"""
        await self._update_metadata(conversation_id, mode=ChatMode(mode))

    async def _update_metadata(self, conversation_id: str, **changes):
        conversation = self._state.get(conversation_id)
        if conversation is None:
            self.logger.debug(f"Ignoring update of unknown conversation {conversation_id}")
            return

        updated = conversation.model_copy(update={
            **changes,
            "updated_at": max(self.clock(), conversation.updated_at),
        })
        self.dispatch(ConversationUpdated(updated))
        log_conversation_event(self.logger, "updated", conversation_id, fields=sorted(changes))

        patch = {key: value.value if isinstance(value, ChatMode) else value for key, value in changes.items()}
        result = await self._call_backend(
            "update_conversation",
            lambda: self.backend.update_conversation(conversation_id, patch),
            FAILED_TO_UPDATE
        )
        self._report(result, ErrorKind.UPDATE_FAILED, conversation_id, "update_conversation")

    async def _call_backend(self, operation: str, call, failure_message: str) -> BackendResult:
        try:
            return await call()
        except Exception as e:
            self.error_tracker.track_error(e, operation)
            return BackendResult.fail(failure_message)

    def _report(self, result: BackendResult, kind: ErrorKind, conversation_id: str, context: str):
        if result.success:
            return
        if result.not_found:
            # Never reached the backend, nothing to reconcile
            self.logger.debug(f"{context}: conversation {conversation_id} unknown to backend, kept local result")
            return

        message = result.message or (FAILED_TO_DELETE if kind == ErrorKind.DELETE_FAILED else FAILED_TO_UPDATE)
        self.error_tracker.track_failure(kind.value, message, context, conversation_id=conversation_id)
        self.dispatch(ErrorRaised(ChatError(kind, message, conversation_id)))

    def clear_error(self):
        """Reset last_error; safe to call repeatedly"""
        self.dispatch(ErrorCleared())

    def reset(self):
        """Forget every conversation, in memory and in storage"""
        self.dispatch(StateReset())
        for key in StorageKeys.CHAT_KEYS:
            self.storage.remove(key)
        self.logger.info("Conversation store reset")

    def dispose(self):
        """Detach listeners; later dispatches are ignored"""
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._listeners.clear()
        self._disposed = True
