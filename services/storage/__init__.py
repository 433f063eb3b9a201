"""
=====================================================
Support Line - Storage
=====================================================
"""

from config.settings import Settings

from .store_base import (
    Call,
    Caller,
    CallerRole,
    CallSession,
    CallStatus,
    CallStore,
    Conversation,
    DashboardSnapshot,
    DictationGroup,
    DictationSubject,
    Escalation,
    MessageRole,
    RecordDraft,
    RecordEntry,
    SpecialistStatus,
    StorageError,
    StoredMessage,
)
from .memory_store import InMemoryCallStore

__all__ = [
    'Call',
    'Caller',
    'CallerRole',
    'CallSession',
    'CallStatus',
    'CallStore',
    'Conversation',
    'DashboardSnapshot',
    'DictationGroup',
    'DictationSubject',
    'Escalation',
    'MessageRole',
    'RecordDraft',
    'RecordEntry',
    'SpecialistStatus',
    'StorageError',
    'StoredMessage',
    'InMemoryCallStore',
    'create_call_store',
]


async def create_call_store(settings: Settings) -> CallStore:
    """
    Factory function to create the call store from settings

    Uses PostgreSQL when DATABASE_URL is set, the in-memory store otherwise.
    """
    if settings.database_url:
        from services.database import get_db_pool
        from .postgres_store import PostgresCallStore

        pool = await get_db_pool()
        store = PostgresCallStore(pool)
        if settings.db_auto_create_schema:
            await store.ensure_schema()
        return store

    from loguru import logger
    logger.warning("Store: DATABASE_URL not set - using in-memory store (data is lost on restart)")
    return InMemoryCallStore()
