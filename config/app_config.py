"""
Configuration for the DBAAS chat engine

One dataclass per concern, gathered in AppConfig. Secrets come from Streamlit
secrets with environment variables as fallback; APP_ENV, DEBUG, CHAT_BACKEND
and CHAT_STORAGE override the defaults at load time.
"""

import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import streamlit as st


def _read_secret(name: str) -> str:
    """Streamlit secret, or the environment variable of the same name"""
    # Under pytest the environment is authoritative
    if os.getenv("PYTEST_CURRENT_TEST") is None:
        try:
            value = st.secrets.get(name)
        except Exception:
            # No secrets.toml outside `streamlit run`
            value = None
        if value:
            return str(value)
    return os.getenv(name, "")


def _ensure_parent_dir(path: str):
    Path(path).parent.mkdir(parents=True, exist_ok=True)


@dataclass
class APIConfig:
    """Credentials for the OpenAI backend"""
    openai_api_key: str = ""
    openai_base_url: str = ""

    @classmethod
    def from_secrets(cls) -> 'APIConfig':
        return cls(
            openai_api_key=_read_secret("OPENAI_API_KEY"),
            openai_base_url=_read_secret("OPENAI_BASE_URL")
        )


@dataclass
class LLMConfig:
    """Language model configuration for the OpenAI backend"""
    model_name: str = "gpt-4o-mini"
    temperature: float = 0.5
    max_tokens: int = 1000
    request_timeout: float = 30.0

    def to_dict(self) -> Dict[str, Any]:
        """Keyword arguments for ChatOpenAI"""
        return {
            "model": self.model_name,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout": self.request_timeout
        }


@dataclass
class ChatConfig:
    """Conversation store limits and behaviour"""
    max_conversations: int = 50
    max_messages_per_conversation: int = 1000
    max_message_length: int = 4000
    default_title: str = "New Conversation"
    title_max_words: int = 6
    title_max_length: int = 50
    reject_overlapping_sends: bool = True


@dataclass
class StorageConfig:
    """Persistence configuration"""
    backend: str = "sqlite"  # "sqlite", "session" or "memory"
    db_path: str = "data/chat_storage.db"
    namespace: str = "dbaas_chat"

    AVAILABLE_BACKENDS = ("sqlite", "session", "memory")


@dataclass
class BackendConfig:
    """Backend chat client selection"""
    kind: str = "mock"  # "mock" or "openai"
    mock_latency_seconds: float = 0.5
    mock_reply_latency_seconds: float = 1.0

    AVAILABLE_KINDS = ("mock", "openai")


@dataclass
class ResilienceConfig:
    """Retry and circuit breaker settings for backend calls"""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    failure_threshold: int = 5
    recovery_timeout: int = 60


@dataclass
class UIConfig:
    """User interface preference defaults"""
    app_title: str = "DBAAS Chat"
    default_theme: str = "light"
    default_language: str = "en"
    mobile_breakpoint: int = 768
    tablet_breakpoint: int = 1024


@dataclass
class LoggingConfig:
    """Logging and monitoring configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    enable_file_logging: bool = False
    log_file: str = "logs/app.log"


@dataclass
class AppConfig:
    """Main application configuration"""
    api: APIConfig = field(default_factory=APIConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Environment settings
    environment: str = field(default_factory=lambda: os.getenv("APP_ENV", "development"))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")

    # Logging level and debug flag forced by APP_ENV
    ENVIRONMENT_OVERRIDES = {
        "production": ("WARNING", False),
        "development": ("DEBUG", True),
    }

    @classmethod
    def load(cls) -> 'AppConfig':
        """Defaults plus secrets and environment overrides"""
        config = cls()
        config.api = APIConfig.from_secrets()

        config.backend.kind = os.getenv("CHAT_BACKEND", config.backend.kind).lower()
        config.storage.backend = os.getenv("CHAT_STORAGE", config.storage.backend).lower()

        if config.environment in cls.ENVIRONMENT_OVERRIDES:
            config.logging.level, config.debug = cls.ENVIRONMENT_OVERRIDES[config.environment]

        return config

    def validate(self) -> List[str]:
        """
        Check the settings that would break the engine at runtime

        Also creates the directories for the SQLite file and the log file.

        Returns:
            List of human-readable problems, empty when valid
        """
        errors = []

        if self.backend.kind not in BackendConfig.AVAILABLE_KINDS:
            errors.append(f"Unknown backend kind '{self.backend.kind}'")
        elif self.backend.kind == "openai" and not self.api.openai_api_key:
            errors.append("OpenAI API key is required for the openai backend")

        if self.storage.backend not in StorageConfig.AVAILABLE_BACKENDS:
            errors.append(f"Unknown storage backend '{self.storage.backend}'")

        for name in ("max_conversations", "max_messages_per_conversation", "max_message_length"):
            if getattr(self.chat, name) < 1:
                errors.append(f"chat.{name} must be at least 1")

        if self.ui.mobile_breakpoint >= self.ui.tablet_breakpoint:
            errors.append("ui.mobile_breakpoint must be below ui.tablet_breakpoint")

        if self.storage.backend == "sqlite":
            _ensure_parent_dir(self.storage.db_path)
        if self.logging.enable_file_logging:
            _ensure_parent_dir(self.logging.log_file)

        return errors


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Process-wide configuration, loaded and validated on first use"""
    global _config
    if _config is None:
        _config = AppConfig.load()
        for error in _config.validate():
            warnings.warn(f"Configuration error: {error}")
    return _config


def reload_config() -> AppConfig:
    """Drop the cached configuration and load it again"""
    global _config
    _config = None
    return get_config()
