"""
Monitoring infrastructure - structured logging and error tracking.
"""

from .logging_service import (
    StructuredFormatter,
    ErrorTracker,
    setup_logging,
    get_logger,
    log_execution_time,
    log_model_usage,
    log_conversation_event,
    initialize_logging,
    get_error_tracker
)

__all__ = [
    'StructuredFormatter',
    'ErrorTracker',
    'setup_logging',
    'get_logger',
    'log_execution_time',
    'log_model_usage',
    'log_conversation_event',
    'initialize_logging',
    'get_error_tracker'
]
