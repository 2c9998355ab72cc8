"""
Mock backend - in-process stand-in for the chat API.

Seeds a few sample conversations and answers with canned, mode-specific replies
after a simulated network delay.
"""

import asyncio
import random
from datetime import timedelta
from typing import Dict, List, Optional

from config.app_config import BackendConfig, ChatConfig
from services.backend_service.client import ChatBackend
from services.backend_service.models import (
    BackendResult,
    ConversationPatch,
    SendMessageRequest,
    SendMessageResponse,
)
from services.chat_service.helpers import (
    create_conversation,
    create_message,
    truncate_text,
    update_conversation_with_message,
    utc_now,
)
from services.chat_service.models import ChatMode, Conversation, Message, MessageRole

MODE_OPENERS: Dict[ChatMode, List[str]] = {
    ChatMode.NORMAL: [
        "That's an interesting question! Let me help you with that.",
        "I understand what you're asking. Here's what I think:",
        "Great question! Here's my perspective on this topic:",
        "I'd be happy to help you with that. Let me explain:",
        "That's a common question. Here's what you should know:",
    ],
    ChatMode.DEEPTHINK: [
        "Let me think deeply about this question and provide you with a comprehensive analysis:",
        "This is a complex topic that requires careful consideration. Here's my detailed analysis:",
        "I'll analyze this from multiple angles to give you a thorough understanding:",
        "Let me break this down systematically and explore all aspects:",
        "This deserves a deep dive. Here's my comprehensive response:",
    ],
    ChatMode.RESEARCH: [
        "Let me research this topic thoroughly and provide you with detailed information:",
        "I'll gather comprehensive information about this subject for you:",
        "This requires extensive research. Here's what I've found:",
        "Let me provide you with a well-researched and detailed response:",
        "I'll give you a thorough, research-backed answer to your question:",
    ],
}

TOPIC_REPLIES = [
    (("react",),
     "React is a JavaScript library for building user interfaces. It uses a component-based "
     "architecture and a virtual DOM for efficient rendering. Key concepts:\n\n"
     "- **Components**: Reusable pieces of UI\n"
     "- **Props**: Data passed to components\n"
     "- **State**: Internal component data\n"
     "- **Hooks**: Functions that let you use state and lifecycle features\n\n"
     "Would you like me to elaborate on any of these concepts?"),
    (("typescript",),
     "TypeScript is a strongly typed superset of JavaScript that adds static type checking:\n\n"
     "- **Type Safety**: Catch errors at compile time\n"
     "- **Better IDE Support**: Enhanced autocomplete and refactoring\n"
     "- **Documentation**: Types serve as inline documentation\n\n"
     "TypeScript compiles to plain JavaScript."),
    (("css", "styling"),
     "CSS is the language used to style web pages. Some modern techniques:\n\n"
     "- **Flexbox**: For one-dimensional layouts\n"
     "- **CSS Grid**: For two-dimensional layouts\n"
     "- **Custom Properties**: For dynamic theming"),
]

DEFAULT_REPLY = (
    "This is a mock response from the DBAAS Chat backend. Configure the openai backend "
    f"to get real answers. Response modes ({', '.join(mode.label for mode in ChatMode)}) "
    "change the tone of the reply."
)


def build_mock_reply(user_message: str, mode: ChatMode, rng: Optional[random.Random] = None) -> str:
    """Canned reply: a mode-specific opener followed by topic-aware content"""
    rng = rng or random.Random()
    opener = rng.choice(MODE_OPENERS[mode])
    lowered = user_message.lower()

    for keywords, body in TOPIC_REPLIES:
        if any(keyword in lowered for keyword in keywords):
            return f"{opener}\n\n{body}"

    return f"{opener}\n\n{DEFAULT_REPLY}"


def seed_conversations() -> List[Conversation]:
    """Sample history shown on first launch"""
    now = utc_now()
    seeds = [
        ("conv-1", "How to build a React app", ChatMode.NORMAL, 1,
         "How do I create a new React application?",
         "To create a new React application, you can use Vite:\n\n"
         "```bash\nnpm create vite@latest my-app -- --template react-ts\ncd my-app\nnpm install\nnpm run dev\n```"),
        ("conv-2", "Understanding TypeScript interfaces", ChatMode.NORMAL, 2,
         "What are TypeScript interfaces and how do they work?",
         "TypeScript interfaces define the structure of objects. They act as contracts that specify "
         "what properties and methods an object should have."),
        ("conv-3", "CSS Grid vs Flexbox", ChatMode.RESEARCH, 3,
         "When should I use CSS Grid vs Flexbox?",
         "**Flexbox** is best for one-dimensional layouts, **CSS Grid** for two-dimensional layouts. "
         "General rule: use Flexbox for components, Grid for page layouts."),
    ]

    conversations = []
    for index, (conv_id, title, mode, hours_ago, question, answer) in enumerate(seeds):
        asked_at = now - timedelta(hours=hours_ago)
        answered_at = asked_at + timedelta(seconds=100)
        conversations.append(Conversation(
            id=conv_id,
            title=title,
            mode=mode,
            messages=[
                Message(id=f"msg-{index * 2 + 1}", content=question, role=MessageRole.USER, timestamp=asked_at),
                Message(id=f"msg-{index * 2 + 2}", content=answer, role=MessageRole.ASSISTANT, timestamp=answered_at),
            ],
            created_at=asked_at,
            updated_at=answered_at,
        ))
    return conversations


class MockChatBackend(ChatBackend):
    """
    In-memory mock of the chat API.
    Keeps its own copy of every conversation, like a remote service would.
    """

    def __init__(
        self,
        config: Optional[BackendConfig] = None,
        conversations: Optional[List[Conversation]] = None,
        rng: Optional[random.Random] = None,
        max_conversations: int = ChatConfig.max_conversations
    ):
        super().__init__(max_conversations)
        self.config = config or BackendConfig()
        self._rng = rng or random.Random()
        seeded = seed_conversations() if conversations is None else conversations
        for conversation in seeded:
            self._remember(conversation)

    async def _delay(self, seconds: float):
        if seconds > 0:
            await asyncio.sleep(seconds)

    async def list_conversations(self) -> BackendResult[List[Conversation]]:
        await self._delay(self.config.mock_latency_seconds)
        return BackendResult.ok(list(self._conversations.values()), "Conversations loaded successfully")

    async def get_conversation(self, conversation_id: str) -> BackendResult[Conversation]:
        await self._delay(self.config.mock_latency_seconds)
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return BackendResult.missing()
        return BackendResult.ok(conversation, "Conversation loaded successfully")

    async def send_message(self, request: SendMessageRequest) -> BackendResult[SendMessageResponse]:
        await self._delay(self.config.mock_reply_latency_seconds)

        conversation = self._conversations.get(request.conversation_id) if request.conversation_id else None
        if conversation is None:
            conversation = create_conversation(
                title=truncate_text(request.message.strip(), 50),
                mode=request.mode,
                conversation_id=request.conversation_id,
            )
            self.logger.debug(f"Mock backend opened conversation {conversation.id}")

        user_message = create_message(request.message, MessageRole.USER)
        conversation = update_conversation_with_message(conversation, user_message)

        reply = build_mock_reply(request.message, request.mode, self._rng)
        ai_message = create_message(reply, MessageRole.ASSISTANT)
        conversation = update_conversation_with_message(conversation, ai_message)

        self._remember(conversation)

        return BackendResult.ok(
            SendMessageResponse(message=ai_message, conversation_id=conversation.id),
            "Message sent successfully"
        )

    async def create_conversation(self, title: Optional[str] = None) -> BackendResult[Conversation]:
        await self._delay(self.config.mock_latency_seconds)
        conversation = create_conversation(title=title)
        self._remember(conversation)
        return BackendResult.ok(conversation, "Conversation created successfully")

    async def delete_conversation(self, conversation_id: str) -> BackendResult[None]:
        await self._delay(self.config.mock_latency_seconds)
        if self._conversations.pop(conversation_id, None) is None:
            return BackendResult.missing()
        return BackendResult.ok(None, "Conversation deleted successfully")

    async def update_conversation(self, conversation_id: str, patch: ConversationPatch) -> BackendResult[Conversation]:
        await self._delay(self.config.mock_latency_seconds)
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return BackendResult.missing()

        merged = {**conversation.to_storage(), **patch, "updatedAt": utc_now()}
        try:
            updated = Conversation.model_validate(merged)
        except ValueError as e:
            return BackendResult.fail(f"Invalid conversation update: {e}")

        self._conversations[conversation_id] = updated
        return BackendResult.ok(updated, "Conversation updated successfully")
