"""
Chat service data models for conversations, messages and store state.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ChatMode(str, Enum):
    """Per-conversation hint forwarded to the backend on each send"""
    NORMAL = "normal"
    DEEPTHINK = "deepthink"
    RESEARCH = "research"

    @property
    def label(self) -> str:
        return CHAT_MODE_LABELS[self]


CHAT_MODE_LABELS = {
    ChatMode.NORMAL: "Normal",
    ChatMode.DEEPTHINK: "DeepThink",
    ChatMode.RESEARCH: "Research Longer",
}


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class LoadStatus(str, Enum):
    """Lifecycle of the conversation collection"""
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    LOAD_FAILED = "load_failed"


class ErrorKind(str, Enum):
    """Recovered failures surfaced through ChatState.last_error"""
    LOAD_FAILED = "load_failed"
    SEND_FAILED = "send_failed"
    DELETE_FAILED = "delete_failed"
    UPDATE_FAILED = "update_failed"


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps from older payloads are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EntityModel(BaseModel):
    """Immutable entity serialized with camelCase keys"""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    def to_storage(self) -> dict:
        """JSON-ready dict; datetimes become ISO-8601 strings"""
        return self.model_dump(mode="json", by_alias=True)


class Message(EntityModel):
    """Individual message in a conversation"""
    id: str
    content: str
    role: MessageRole
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class Conversation(EntityModel):
    """Conversation containing messages and metadata"""
    id: str
    title: str
    messages: List[Message] = Field(default_factory=list)
    mode: ChatMode = ChatMode.NORMAL
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _dates_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def has_user_message(self) -> bool:
        return any(m.role == MessageRole.USER for m in self.messages)


@dataclass(frozen=True)
class ChatError:
    """A recovered failure exposed to the UI layer"""
    kind: ErrorKind
    message: str
    conversation_id: Optional[str] = None


@dataclass(frozen=True)
class ChatState:
    """
    Immutable snapshot of the conversation collection.

    conversations is ordered most recently updated first. pending maps a
    conversation id to the user message ids still awaiting an assistant reply.
    """
    conversations: Dict[str, Conversation] = field(default_factory=dict)
    current_conversation_id: Optional[str] = None
    status: LoadStatus = LoadStatus.IDLE
    last_error: Optional[ChatError] = None
    pending: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def is_loading(self) -> bool:
        return self.status == LoadStatus.LOADING

    @property
    def is_typing(self) -> bool:
        return any(self.pending.values())

    @property
    def current_conversation(self) -> Optional[Conversation]:
        if self.current_conversation_id is None:
            return None
        return self.conversations.get(self.current_conversation_id)

    def ordered_conversations(self) -> List[Conversation]:
        return list(self.conversations.values())

    def get(self, conversation_id: str) -> Optional[Conversation]:
        return self.conversations.get(conversation_id)

    def has_outstanding_send(self, conversation_id: str) -> bool:
        return bool(self.pending.get(conversation_id))

    def is_pending(self, message_id: str) -> bool:
        return any(message_id in ids for ids in self.pending.values())
