"""Base interface for blob storage backends.

A backend stores bytes under a caller-chosen (bucket, path) key and
returns them later. Keys are never overwritten: callers choose a
distinct path per upload.
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Abstract base for blob storage.

    Subclasses implement:
    - put(): store bytes, raising StorageError on failure or key conflict
    - get(): fetch bytes, raising StorageError when missing or unreachable
    """

    name: str = "base"

    @abstractmethod
    async def put(self, bucket: str, path: str, data: bytes) -> None:
        """Store ``data`` at ``bucket/path``.

        Raises:
            StorageError: write failed or the key already exists
        """
        ...

    @abstractmethod
    async def get(self, bucket: str, path: str) -> bytes:
        """Return the bytes stored at ``bucket/path``.

        Raises:
            StorageError: key missing or backend unreachable
        """
        ...

    async def close(self) -> None:
        """Release network resources, if any."""
        return None
