"""Persistence layer: key-value store, JSON files and background writes."""

from .base_manager import BaseDataManager
from .json_manager import JSONRepository
from .storage import InMemoryStore, JSONFileStore, KeyValueStore, create_store
from .writer import BestEffortWriter

__all__ = [
    "BaseDataManager",
    "BestEffortWriter",
    "InMemoryStore",
    "JSONFileStore",
    "JSONRepository",
    "KeyValueStore",
    "create_store",
]
