"""
Chat engine - wires configuration, storage, backend and stores together.
"""

from datetime import datetime
from typing import Callable, Optional

from config.app_config import AppConfig
from config.environments import get_environment_config
from infrastructure.monitoring.logging_service import ErrorTracker, initialize_logging, get_logger
from infrastructure.storage.storage_service import StorageService, create_storage_service
from services.backend_service import ChatBackend, create_backend
from services.chat_service.conversation_store import ConversationStore
from services.chat_service.helpers import utc_now
from services.chat_service.models import ChatState
from services.chat_service.send_pipeline import SendPipeline
from services.ui_service.preferences import UIPreferenceStore
from services.ui_service.reactions import bind_sidebar_reactions


class ChatEngine:
    """
    Owns one set of stores for a single client session.
    Nothing here is a module-level singleton; create one engine per session.
    """

    def __init__(
        self,
        config: AppConfig,
        storage: StorageService,
        backend: ChatBackend,
        error_tracker: ErrorTracker,
        clock: Callable[[], datetime] = utc_now
    ):
        self.logger = get_logger(__name__)
        self.config = config
        self.storage = storage
        self.backend = backend
        self.error_tracker = error_tracker

        self.conversations = ConversationStore(
            storage, backend, config.chat, clock=clock, error_tracker=error_tracker
        )
        self.sender = SendPipeline(self.conversations, backend, config.chat, error_tracker=error_tracker)
        self.preferences = UIPreferenceStore(storage, config.ui)
        self._unbind_reactions: Optional[Callable[[], None]] = None

    @classmethod
    def create(
        cls,
        config: Optional[AppConfig] = None,
        storage: Optional[StorageService] = None,
        backend: Optional[ChatBackend] = None,
        clock: Callable[[], datetime] = utc_now
    ) -> 'ChatEngine':
        """
        Build an engine from configuration

        Args:
            config: Application configuration (defaults to the APP_ENV preset)
            storage: Storage override, e.g. for tests
            backend: Backend override, e.g. for tests

        Returns:
            ChatEngine: Engine ready to start()
        """
        config = config or get_environment_config()
        error_tracker = initialize_logging(config)
        storage = storage or create_storage_service(config.storage)
        backend = backend or create_backend(config)
        return cls(config, storage, backend, error_tracker, clock=clock)

    async def start(self) -> ChatState:
        """Restore preferences, bind UI reactions and load conversations"""
        self.preferences.load()
        if self._unbind_reactions is None:
            self._unbind_reactions = bind_sidebar_reactions(self.conversations, self.preferences)

        state = await self.conversations.load_initial_state()
        self.logger.info(
            f"Chat engine started: {len(state.conversations)} conversations, status={state.status.value}"
        )
        return state

    async def shutdown(self):
        """Wait for sends in flight, then dispose"""
        await self.sender.wait_idle()
        self.dispose()

    def dispose(self):
        if self._unbind_reactions is not None:
            self._unbind_reactions()
            self._unbind_reactions = None
        self.sender.cancel_all()
        self.conversations.dispose()
        self.logger.info("Chat engine disposed")
