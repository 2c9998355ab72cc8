"""
Development environment configuration overrides
"""

from dataclasses import dataclass
from config.app_config import AppConfig


@dataclass
class DevelopmentConfig(AppConfig):
    """Development environment configuration"""
    
    def __post_init__(self):
        
        # Development-specific overrides
        self.environment = "development"
        self.debug = True
        
        # More verbose logging in development
        self.logging.level = "DEBUG"
        self.logging.enable_file_logging = True
        self.logging.log_file = "logs/dev-app.log"
        
        self.ui.app_title = "🧪 DBAAS Chat (DEV)"
        
        # Mock backend with a short simulated latency keeps local runs snappy
        self.backend.kind = "mock"
        self.backend.mock_latency_seconds = 0.1
        self.backend.mock_reply_latency_seconds = 0.3
        
        # Separate database so dev sessions never touch real history
        self.storage.db_path = "data/dev_chat_storage.db"
        self.storage.namespace = "dbaas_chat_dev"
        
        # Fail fast while iterating on the backend integration
        self.resilience.max_retries = 1
        self.resilience.base_delay = 0.5


def get_development_config() -> DevelopmentConfig:
    """Get development-specific configuration"""
    return DevelopmentConfig()
