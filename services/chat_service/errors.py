"""
Typed rejections raised by the send pipeline.

Everything else (load, send, delete and update failures) is recovered inside the
store and surfaced through ChatState.last_error instead of being raised.
"""


class ChatEngineError(Exception):
    """Base class for errors raised across the engine's public API"""
    pass


class MessageValidationError(ChatEngineError):
    """A send was rejected before any state mutation or network call"""
    pass


class ConversationNotFoundError(MessageValidationError):
    """The explicitly targeted conversation does not exist"""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class ConversationBusyError(MessageValidationError):
    """The conversation already has a send waiting for its reply"""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} is still waiting for a reply")
        self.conversation_id = conversation_id


# User-facing causes stored in ChatError.message
FAILED_TO_LOAD = "Failed to load conversations."
FAILED_TO_SEND = "Failed to send message. Please try again."
FAILED_TO_DELETE = "Failed to delete conversation."
FAILED_TO_UPDATE = "Failed to update conversation."
