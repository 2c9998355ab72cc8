"""
Backend chat client contract.

The conversation store and send pipeline depend only on ChatBackend; the
transport behind it (mock, OpenAI, HTTP) is an implementation detail.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from config.app_config import ChatConfig
from services.backend_service.models import (
    BackendResult,
    ConversationPatch,
    SendMessageRequest,
    SendMessageResponse,
)
from services.chat_service.models import Conversation
from infrastructure.monitoring.logging_service import get_logger

T = TypeVar("T")


class ChatBackend(ABC):
    """
    Asynchronous backend contract.
    Every call returns a BackendResult; implementations must not raise.

    Implementations keep their conversations in a registry capped at
    max_conversations; the least recently updated one is evicted first.
    """

    def __init__(self, max_conversations: int = ChatConfig.max_conversations):
        if max_conversations < 1:
            raise ValueError("max_conversations must be at least 1")
        self.logger = get_logger(__name__)
        self.max_conversations = max_conversations
        self._conversations: Dict[str, Conversation] = {}

    def _remember(self, conversation: Conversation):
        """Store a conversation as the newest registry entry and evict past the cap"""
        self._conversations.pop(conversation.id, None)
        self._conversations[conversation.id] = conversation
        while len(self._conversations) > self.max_conversations:
            # Ties on updated_at evict the earliest stored
            older = list(self._conversations.values())[:-1]
            oldest = min(older, key=lambda c: c.updated_at)
            del self._conversations[oldest.id]
            self.logger.debug(f"Evicted conversation {oldest.id} from the backend registry")

    async def _guard(self, operation: str, call: Callable[[], Awaitable[T]], failure_message: str) -> BackendResult[T]:
        """Await call and convert any exception into a failed result"""
        try:
            return BackendResult.ok(await call())
        except Exception as e:
            self.logger.error(f"Backend {operation} failed: {e.__class__.__name__}: {e}")
            return BackendResult.fail(self.describe_error(e) or failure_message)

    def describe_error(self, error: Exception) -> Optional[str]:
        """User-facing text for an error; None falls back to the generic message"""
        return None

    @abstractmethod
    async def list_conversations(self) -> BackendResult[List[Conversation]]:
        """Get all conversations"""

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> BackendResult[Conversation]:
        """Get a specific conversation by ID"""

    @abstractmethod
    async def send_message(self, request: SendMessageRequest) -> BackendResult[SendMessageResponse]:
        """Send a message and get the assistant reply"""

    @abstractmethod
    async def create_conversation(self, title: Optional[str] = None) -> BackendResult[Conversation]:
        """Create a new conversation"""

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> BackendResult[None]:
        """Delete a conversation"""

    @abstractmethod
    async def update_conversation(self, conversation_id: str, patch: ConversationPatch) -> BackendResult[Conversation]:
        """Apply a partial update (title, mode) to a conversation"""
