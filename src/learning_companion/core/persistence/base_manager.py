"""
Base data manager for store-backed components.

Provides the common initialize/shutdown lifecycle: load state from the
key-value store on startup and save it on shutdown.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from .storage import KeyValueStore
from .writer import BestEffortWriter

logger = logging.getLogger(__name__)


class BaseDataManager(ABC):
    """Base class for data managers with common initialization and persistence patterns."""

    def __init__(
        self,
        store: KeyValueStore,
        manager_name: str,
        writer: Optional[BestEffortWriter] = None,
    ):
        """
        Initialize base data manager.

        Args:
            store: Key-value store holding this manager's state
            manager_name: Name of the manager for logging
            writer: Background writer for best-effort persistence
        """
        self.store = store
        self.manager_name = manager_name
        self.writer = writer or BestEffortWriter()
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the data manager."""
        if not self._initialized:
            await self._load_data()
            self._initialized = True
            logger.info(f"{self.manager_name} initialized")

    async def shutdown(self) -> None:
        """Shutdown the data manager."""
        if self._initialized:
            await self._save_data()
            self._initialized = False
            logger.info(f"{self.manager_name} shutdown")

    async def health_check(self) -> bool:
        """Check if the data manager is healthy."""
        return self._initialized

    @property
    def initialized(self) -> bool:
        return self._initialized

    @abstractmethod
    async def _load_data(self) -> None:
        """Load data during initialization. Must be implemented by subclasses."""
        pass

    @abstractmethod
    async def _save_data(self) -> None:
        """Save data during shutdown. Must be implemented by subclasses."""
        pass
