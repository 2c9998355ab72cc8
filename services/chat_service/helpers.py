"""
Helpers shared by the store, the send pipeline and the backends.
"""

import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from services.chat_service.models import ChatMode, Conversation, Message, MessageRole

DEFAULT_CONVERSATION_TITLE = "New Conversation"
MAX_MESSAGE_LENGTH = 4000
TITLE_MAX_WORDS = 6
TITLE_MAX_LENGTH = 50


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """Generate a unique ID for messages and conversations"""
    return uuid.uuid4().hex


def truncate_text(text: str, max_length: int = 100) -> str:
    """Truncate text to max_length characters, marking the cut with '...'"""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def generate_conversation_title(
    first_message: str,
    max_words: int = TITLE_MAX_WORDS,
    max_length: int = TITLE_MAX_LENGTH
) -> str:
    """Generate conversation title from the leading words of the first message"""
    words = first_message.split()
    return truncate_text(" ".join(words[:max_words]), max_length)


def validate_message(content: Optional[str], max_length: int = MAX_MESSAGE_LENGTH) -> Tuple[bool, Optional[str]]:
    """
    Validate message content

    Returns:
        (is_valid, error) where error is a human-readable reason
    """
    if content is None or not content.strip():
        return False, "Message cannot be empty"

    if len(content.strip()) > max_length:
        return False, f"Message too long. Maximum {max_length} characters allowed."

    return True, None


def create_message(content: str, role: MessageRole, now: Optional[datetime] = None) -> Message:
    """Create a new message with trimmed content"""
    return Message(
        id=generate_id(),
        content=content.strip(),
        role=role,
        timestamp=now or utc_now()
    )


def create_conversation(
    title: Optional[str] = None,
    mode: ChatMode = ChatMode.NORMAL,
    now: Optional[datetime] = None,
    conversation_id: Optional[str] = None
) -> Conversation:
    """Create a new empty conversation"""
    now = now or utc_now()
    return Conversation(
        id=conversation_id or generate_id(),
        title=title or DEFAULT_CONVERSATION_TITLE,
        messages=[],
        mode=mode,
        created_at=now,
        updated_at=now
    )


def update_conversation_with_message(
    conversation: Conversation,
    message: Message,
    now: Optional[datetime] = None,
    default_title: str = DEFAULT_CONVERSATION_TITLE,
    title_max_words: int = TITLE_MAX_WORDS,
    title_max_length: int = TITLE_MAX_LENGTH
) -> Conversation:
    """
    Return a copy of the conversation with the message appended.

    updated_at never moves backwards. The title is derived from the first user
    message as long as it still carries the default placeholder.
    """
    now = now or utc_now()
    title = conversation.title
    if (
        message.role == MessageRole.USER
        and title == default_title
        and not conversation.has_user_message()
    ):
        title = generate_conversation_title(message.content, title_max_words, title_max_length) or default_title

    return conversation.model_copy(update={
        "messages": [*conversation.messages, message],
        "updated_at": max(now, conversation.updated_at),
        "title": title,
    })


def sort_conversations_by_date(conversations: Iterable[Conversation]) -> List[Conversation]:
    """Sort conversations by updated date (newest first); ties keep their input order"""
    return sorted(conversations, key=lambda c: c.updated_at, reverse=True)


def limit_conversations(conversations: Iterable[Conversation], max_conversations: int) -> List[Conversation]:
    """Keep the max_conversations most recently updated conversations"""
    return sort_conversations_by_date(conversations)[:max_conversations]
