from .database import InMemoryKeyValueStore, KeyValueStore, SQLiteKeyValueStore, StoredValue
from .record_policy import (
    InvalidTransitionError,
    RecordNotFoundError,
    RecordPolicyGuard,
    RecordStoreError,
    RecordValidationError,
    StaleWriteError,
)
from .service import RecordsService

__all__ = [
    "InMemoryKeyValueStore",
    "InvalidTransitionError",
    "KeyValueStore",
    "RecordNotFoundError",
    "RecordPolicyGuard",
    "RecordStoreError",
    "RecordValidationError",
    "RecordsService",
    "SQLiteKeyValueStore",
    "StaleWriteError",
    "StoredValue",
]
