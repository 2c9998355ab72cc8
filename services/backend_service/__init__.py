"""
Backend service - chat client contract and its mock and OpenAI implementations.
"""

from config.app_config import AppConfig
from .client import ChatBackend
from .models import BackendResult, ConversationPatch, SendMessageRequest, SendMessageResponse
from .mock_backend import MockChatBackend
from .openai_backend import OpenAIChatBackend


def create_backend(config: AppConfig) -> ChatBackend:
    """
    Create the chat backend selected by configuration

    Args:
        config: Application configuration

    Returns:
        ChatBackend: Mock or OpenAI backend
    """
    kind = config.backend.kind
    if kind == "openai":
        return OpenAIChatBackend(
            config.api, config.llm, config.resilience, max_conversations=config.chat.max_conversations
        )
    if kind == "mock":
        return MockChatBackend(config.backend, max_conversations=config.chat.max_conversations)
    raise ValueError(f"Unknown backend kind '{kind}'")


__all__ = [
    'ChatBackend',
    'BackendResult',
    'ConversationPatch',
    'SendMessageRequest',
    'SendMessageResponse',
    'MockChatBackend',
    'OpenAIChatBackend',
    'create_backend'
]
