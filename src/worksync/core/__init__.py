"""Storage, HTTP clients, and capability contracts used by the sync engines."""

from .async_utils import run_sync
from .kv_store import JsonKeyValueStore

__all__ = ["JsonKeyValueStore", "run_sync"]
