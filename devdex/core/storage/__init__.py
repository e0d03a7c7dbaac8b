from .base import StorageBackend
from .backends import InMemoryStorage, LocalFileStorage, SupabaseStorage, create_storage

__all__ = [
    "StorageBackend",
    "InMemoryStorage",
    "LocalFileStorage",
    "SupabaseStorage",
    "create_storage",
]
