"""
Abstract interface for response cache storage.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class ResponseStoreInterface(ABC):
    """Key/value storage backing the response cache. Keys are normalized text."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value or None."""
        pass

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """Store a value."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a value if present."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every value."""
        pass
