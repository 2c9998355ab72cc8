"""
Storage infrastructure - durable, session-scoped and in-memory key/value stores.
"""

from .storage_service import (
    StorageKeys,
    StorageService,
    SQLiteStorageService,
    SessionStateStorageService,
    MemoryStorageService,
    create_storage_service
)

__all__ = [
    'StorageKeys',
    'StorageService',
    'SQLiteStorageService',
    'SessionStateStorageService',
    'MemoryStorageService',
    'create_storage_service'
]
