"""
Per-environment configuration presets, selected by APP_ENV
"""

import os
from typing import Callable, Dict

from config.app_config import AppConfig


def _presets() -> Dict[str, Callable[[], AppConfig]]:
    from .development import get_development_config
    from .production import get_production_config

    return {
        "development": get_development_config,
        "production": get_production_config,
    }


def get_environment_config() -> AppConfig:
    """
    Configuration preset for APP_ENV (default "development")

    Unknown environments get the base AppConfig.load() configuration.
    """
    env = os.getenv("APP_ENV", "development").lower()
    factory = _presets().get(env, AppConfig.load)
    return factory()
