from closure.storage.adapter import ReprieveState, StoreAdapter
from closure.storage.kv import KeyValueStore, MemoryKeyValueStore, StoreError
from closure.storage.sqlite_store import SqliteKeyValueStore

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "ReprieveState",
    "SqliteKeyValueStore",
    "StoreAdapter",
    "StoreError",
]
