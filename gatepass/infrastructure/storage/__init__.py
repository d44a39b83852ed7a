"""Document storage infrastructure package."""

from gatepass.infrastructure.storage.storage import LocalDocumentStorage, StorageError

__all__ = [
    "LocalDocumentStorage",
    "StorageError",
]
