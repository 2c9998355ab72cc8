"""
Configuration package - unified dataclass settings with environment overrides.
"""

from .app_config import (
    AppConfig,
    APIConfig,
    LLMConfig,
    ChatConfig,
    StorageConfig,
    BackendConfig,
    ResilienceConfig,
    UIConfig,
    LoggingConfig,
    get_config,
    reload_config
)

__all__ = [
    'AppConfig',
    'APIConfig',
    'LLMConfig',
    'ChatConfig',
    'StorageConfig',
    'BackendConfig',
    'ResilienceConfig',
    'UIConfig',
    'LoggingConfig',
    'get_config',
    'reload_config'
]
