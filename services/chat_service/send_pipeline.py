"""
Send pipeline - turns user text into an optimistic message plus a backend round trip.
"""

import asyncio
from typing import Optional, Set

from config.app_config import ChatConfig
from infrastructure.monitoring.logging_service import ErrorTracker, get_error_tracker, get_logger
from services.backend_service.client import ChatBackend
from services.backend_service.models import BackendResult, SendMessageRequest
from services.chat_service.actions import ConversationRekeyed, SendFailed, SendStarted, SendSucceeded
from services.chat_service.conversation_store import ConversationStore
from services.chat_service.errors import (
    FAILED_TO_SEND,
    ConversationBusyError,
    ConversationNotFoundError,
    MessageValidationError,
)
from services.chat_service.helpers import create_message, validate_message
from services.chat_service.models import ChatError, ChatMode, ErrorKind, Message, MessageRole


class SendPipeline:
    """
    Sends user messages through the backend.

    Validation, target resolution, the optimistic append and the typing state
    happen synchronously inside begin_send(); the backend call and its outcome
    run in a task.
    """

    def __init__(
        self,
        store: ConversationStore,
        backend: Optional[ChatBackend] = None,
        config: Optional[ChatConfig] = None,
        error_tracker: Optional[ErrorTracker] = None
    ):
        self.logger = get_logger(__name__)
        self.store = store
        self.backend = backend or store.backend
        self.config = config or store.config
        self.error_tracker = error_tracker or get_error_tracker()
        self._tasks: Set[asyncio.Task] = set()

    def begin_send(self, conversation_id: Optional[str], text: str, mode: Optional[ChatMode] = None) -> asyncio.Task:
        """
        Start a send and return the task that completes it

        Args:
            conversation_id: Target conversation, or None for the current one
            text: Message text
            mode: Response mode; defaults to the conversation's mode

        Returns:
            asyncio.Task resolving once the reply or failure has been applied

        Raises:
            MessageValidationError: Empty or over-long text
            ConversationNotFoundError: conversation_id is not in the collection
            ConversationBusyError: The conversation still waits for a reply
            RuntimeError: Called without a running event loop
        """
        # Raises RuntimeError outside a running loop, before anything is mutated
        loop = asyncio.get_running_loop()

        is_valid, error = validate_message(text, self.config.max_message_length)
        if not is_valid:
            raise MessageValidationError(error)

        state = self.store.state
        target_id = state.current_conversation_id if conversation_id is None else conversation_id

        if target_id is not None:
            conversation = state.get(target_id)
            if conversation is None:
                raise ConversationNotFoundError(target_id)
            if self.config.reject_overlapping_sends and state.has_outstanding_send(target_id):
                raise ConversationBusyError(target_id)
            mode = ChatMode(mode) if mode is not None else conversation.mode
        else:
            mode = ChatMode(mode) if mode is not None else ChatMode.NORMAL
            target_id = self.store.create_conversation(mode=mode)

        user_message = create_message(text, MessageRole.USER, now=self.store.clock())
        self.store.append_message(target_id, user_message)
        self.store.dispatch(SendStarted(target_id, user_message.id))

        task = loop.create_task(self._complete(target_id, user_message, mode))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def send_message(self, conversation_id: Optional[str], text: str, mode: Optional[ChatMode] = None):
        """Send a message and wait until its reply or failure is applied"""
        await self.begin_send(conversation_id, text, mode)

    async def _complete(self, conversation_id: str, user_message: Message, mode: ChatMode):
        request = SendMessageRequest(message=user_message.content, conversation_id=conversation_id, mode=mode)
        try:
            result = await self.backend.send_message(request)
        except Exception as e:
            self.error_tracker.track_error(e, "send_message", conversation_id=conversation_id)
            result = BackendResult.fail(FAILED_TO_SEND)

        if self.store.get_conversation(conversation_id) is None:
            self.logger.debug(f"Discarding reply for deleted conversation {conversation_id}")
            return

        if not result.success or result.data is None:
            message = result.message or FAILED_TO_SEND
            self.error_tracker.track_failure(
                ErrorKind.SEND_FAILED.value, message, "send_message", conversation_id=conversation_id
            )
            self.store.dispatch(SendFailed(
                conversation_id,
                user_message.id,
                ChatError(ErrorKind.SEND_FAILED, message, conversation_id)
            ))
            return

        response = result.data
        target_id = conversation_id
        if response.conversation_id != conversation_id and self.store.get_conversation(response.conversation_id) is None:
            self.store.dispatch(ConversationRekeyed(conversation_id, response.conversation_id))
            target_id = response.conversation_id
            self.logger.info(f"Conversation {conversation_id} adopted backend id {target_id}")

        self.store.append_message(target_id, response.message)
        self.store.dispatch(SendSucceeded(target_id, user_message.id))

    async def wait_idle(self):
        """Wait for every send in flight to settle"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self):
        for task in list(self._tasks):
            task.cancel()
