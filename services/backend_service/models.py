"""
Backend service data models for requests, responses and tagged results.
"""

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from services.chat_service.models import ChatMode, Message

T = TypeVar("T")


class SendMessageRequest(BaseModel):
    """Payload for a single send"""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    message: str
    conversation_id: Optional[str] = None
    mode: ChatMode = ChatMode.NORMAL


class SendMessageResponse(BaseModel):
    """Assistant reply and the conversation it was filed under"""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    message: Message
    conversation_id: str


@dataclass(frozen=True)
class BackendResult(Generic[T]):
    """Outcome of a backend call; failures are values, never exceptions"""
    success: bool
    data: Optional[T] = None
    message: Optional[str] = None
    not_found: bool = False

    @classmethod
    def ok(cls, data: Optional[T] = None, message: Optional[str] = None) -> 'BackendResult[T]':
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, message: str) -> 'BackendResult[T]':
        return cls(success=False, data=None, message=message)

    @classmethod
    def missing(cls, message: str = "Conversation not found") -> 'BackendResult[T]':
        return cls(success=False, data=None, message=message, not_found=True)


ConversationPatch = Dict[str, Any]
