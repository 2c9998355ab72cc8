"""
Production environment configuration overrides
"""

from dataclasses import dataclass
from config.app_config import AppConfig, APIConfig


@dataclass
class ProductionConfig(AppConfig):
    """Production environment configuration"""
    
    def __post_init__(self):
        
        # Production-specific overrides
        self.environment = "production"
        self.debug = False
        
        # Production logging - less verbose, focus on errors
        self.logging.level = "INFO"
        self.logging.enable_file_logging = True
        self.logging.log_file = "logs/prod-app.log"
        
        self.ui.app_title = "DBAAS Chat"
        
        # Real model behind the chat surface
        self.api = APIConfig.from_secrets()
        self.backend.kind = "openai"
        
        self.storage.backend = "sqlite"
        self.storage.db_path = "data/chat_storage.db"
        
        # Production LLM settings - more conservative
        self.llm.temperature = 0.3
        self.llm.max_tokens = 1000
        
        self.resilience.max_retries = 3
        self.resilience.failure_threshold = 5
        self.resilience.recovery_timeout = 60


def get_production_config() -> ProductionConfig:
    """Get production-specific configuration"""
    return ProductionConfig()
