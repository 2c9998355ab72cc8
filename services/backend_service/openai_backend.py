"""
OpenAI-backed chat backend.

Replies are generated with LangChain's ChatOpenAI. Conversations live in an
in-process registry so each send can replay the history of its conversation.
"""

from typing import Dict, List, Optional

import openai
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from config.app_config import APIConfig, ChatConfig, LLMConfig, ResilienceConfig
from infrastructure.monitoring.logging_service import log_execution_time, log_model_usage
from infrastructure.resilience.retry_service import CircuitBreakerError, RetryService
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
from services.chat_service.models import ChatMode, Conversation, MessageRole

MODE_SYSTEM_PROMPTS: Dict[ChatMode, str] = {
    ChatMode.NORMAL: (
        "You are DBAAS Chat, a helpful assistant. Answer clearly and concisely."
    ),
    ChatMode.DEEPTHINK: (
        "You are DBAAS Chat, a careful analyst. Reason through the question step by step, "
        "consider alternatives and explain the trade-offs before giving a conclusion."
    ),
    ChatMode.RESEARCH: (
        "You are DBAAS Chat, a research assistant. Give a thorough, well-structured answer "
        "covering background, key facts and practical recommendations."
    ),
}

# Number of earlier messages replayed to the model on each send
HISTORY_WINDOW = 20


class OpenAIChatBackend(ChatBackend):
    """
    Chat backend that answers through the OpenAI API.

    Calls are wrapped in the retry service with a dedicated circuit breaker.
    """

    def __init__(
        self,
        api_config: APIConfig,
        llm_config: Optional[LLMConfig] = None,
        resilience_config: Optional[ResilienceConfig] = None,
        llm: Optional[ChatOpenAI] = None,
        max_conversations: int = ChatConfig.max_conversations
    ):
        super().__init__(max_conversations)
        self.api_config = api_config
        self.llm_config = llm_config or LLMConfig()
        self.retry_service = RetryService(resilience_config)
        self.circuit_breaker = self.retry_service.get_openai_circuit_breaker()
        self._llm = llm

    @property
    def llm(self) -> ChatOpenAI:
        """Configured ChatOpenAI instance, created on first use"""
        if self._llm is None:
            if not self.api_config.openai_api_key:
                raise ValueError("OpenAI API key not configured")

            kwargs = {}
            if self.api_config.openai_base_url:
                kwargs["base_url"] = self.api_config.openai_base_url

            self._llm = ChatOpenAI(
                **self.llm_config.to_dict(),
                api_key=self.api_config.openai_api_key,
                max_retries=0,
                **kwargs
            )
            self.logger.info(f"LLM initialized: {self.llm_config.model_name}")

        return self._llm

    def describe_error(self, error: Exception) -> Optional[str]:
        if isinstance(error, CircuitBreakerError):
            return "The assistant is temporarily unavailable. Please try again in a minute."
        if isinstance(error, openai.RateLimitError):
            return "The assistant is overloaded right now. Please wait a moment and try again."
        if isinstance(error, openai.APITimeoutError):
            return "The request timed out. Try a shorter question or try again later."
        if isinstance(error, openai.APIConnectionError):
            return "Could not reach the assistant. Check your connection and try again."
        if isinstance(error, openai.InternalServerError):
            return "The assistant service is having technical difficulties. Please try again later."
        if isinstance(error, openai.AuthenticationError):
            return "Authentication with the assistant service failed. Please contact the administrator."
        if isinstance(error, openai.BadRequestError):
            return "Your message could not be processed. Try rephrasing it."
        if isinstance(error, openai.ContentFilterFinishReasonError):
            return "The message or its answer was blocked by content filters."
        return None

    def _build_prompt(self, conversation: Conversation, text: str, mode: ChatMode) -> List[BaseMessage]:
        prompt: List[BaseMessage] = [SystemMessage(content=MODE_SYSTEM_PROMPTS[mode])]
        for message in conversation.messages[-HISTORY_WINDOW:]:
            if message.role == MessageRole.USER:
                prompt.append(HumanMessage(content=message.content))
            else:
                prompt.append(AIMessage(content=message.content))
        prompt.append(HumanMessage(content=text))
        return prompt

    def _log_usage(self, response):
        usage = getattr(response, "usage_metadata", None) or {}
        if usage:
            log_model_usage(
                self.logger,
                self.llm_config.model_name,
                usage.get("total_tokens", 0),
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            )

    async def _complete(self, prompt: List[BaseMessage]) -> str:
        llm = self.llm
        with log_execution_time(self.logger, "openai_completion", model=self.llm_config.model_name):
            response = await self.retry_service.retry_with_circuit_breaker(
                lambda: llm.ainvoke(prompt),
                self.circuit_breaker
            )
        self._log_usage(response)
        return response.content if isinstance(response.content, str) else str(response.content)

    async def list_conversations(self) -> BackendResult[List[Conversation]]:
        return BackendResult.ok(list(self._conversations.values()))

    async def get_conversation(self, conversation_id: str) -> BackendResult[Conversation]:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return BackendResult.missing()
        return BackendResult.ok(conversation)

    async def send_message(self, request: SendMessageRequest) -> BackendResult[SendMessageResponse]:
        async def call() -> SendMessageResponse:
            conversation = self._conversations.get(request.conversation_id) if request.conversation_id else None
            if conversation is None:
                conversation = create_conversation(
                    title=truncate_text(request.message.strip(), 50),
                    mode=request.mode,
                    conversation_id=request.conversation_id,
                )

            reply = await self._complete(self._build_prompt(conversation, request.message, request.mode))

            user_message = create_message(request.message, MessageRole.USER)
            ai_message = create_message(reply, MessageRole.ASSISTANT)
            conversation = update_conversation_with_message(conversation, user_message)
            conversation = update_conversation_with_message(conversation, ai_message)
            self._remember(conversation)

            return SendMessageResponse(message=ai_message, conversation_id=conversation.id)

        return await self._guard("send_message", call, "Failed to send message. Please try again.")

    async def create_conversation(self, title: Optional[str] = None) -> BackendResult[Conversation]:
        conversation = create_conversation(title=title)
        self._remember(conversation)
        return BackendResult.ok(conversation)

    async def delete_conversation(self, conversation_id: str) -> BackendResult[None]:
        if self._conversations.pop(conversation_id, None) is None:
            return BackendResult.missing()
        return BackendResult.ok(None)

    async def update_conversation(self, conversation_id: str, patch: ConversationPatch) -> BackendResult[Conversation]:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return BackendResult.missing()

        async def call() -> Conversation:
            merged = {**conversation.to_storage(), **patch, "updatedAt": utc_now()}
            return Conversation.model_validate(merged)

        result = await self._guard("update_conversation", call, "Failed to update conversation.")
        if result.success:
            self._conversations[conversation_id] = result.data
        return result
