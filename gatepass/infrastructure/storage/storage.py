"""
Local filesystem storage for visitor documents.

Documents are written under a date-partitioned tree and addressed by a
relative path handle. File I/O runs in the threadpool.
"""

import uuid
from pathlib import Path

from fastapi.concurrency import run_in_threadpool

from gatepass.core.config import get_settings
from gatepass.core.logging import get_logger
from gatepass.domain.errors import DependencyError
from gatepass.domain.models import utc_now
from gatepass.domain.ports import DocumentStorage

logger = get_logger(__name__)


class StorageError(DependencyError):
    """Raised when a document cannot be written or removed."""

    code = "storage_unavailable"


class LocalDocumentStorage(DocumentStorage):
    """
    Document storage on a local or mounted volume.

    Example:
        storage = LocalDocumentStorage("./storage/documents")
        ref = await storage.store(content, "identity")
        await storage.delete(ref)
    """

    def __init__(self, base_path: str | Path | None = None):
        """
        Initialize storage.

        Args:
            base_path: Root directory, defaults to settings.document_storage_path.
        """
        root = base_path or get_settings().document_storage_path
        self._base_path = Path(root).resolve()

    async def store(self, content: bytes, category: str) -> str:
        """
        Write a document and return its handle.

        Args:
            content: Raw document bytes.
            category: Document kind, used as the top-level folder.

        Returns:
            str: Relative handle such as "identity/2026-10-18/<hex>.bin".

        Raises:
            StorageError: If the file cannot be written.
        """
        if not content:
            raise StorageError("Refusing to store an empty document")

        ref = f"{category}/{utc_now():%Y-%m-%d}/{uuid.uuid4().hex}.bin"
        try:
            await run_in_threadpool(self._write, ref, content)
        except OSError as e:
            logger.error("document_store_failed", category=category, error=str(e))
            raise StorageError("Document storage is unavailable") from e

        logger.debug("document_stored", ref=ref, size=len(content))
        return ref

    async def delete(self, document_ref: str) -> bool:
        """
        Delete a stored document.

        Args:
            document_ref: Handle returned by store.

        Returns:
            bool: False if the document did not exist.

        Raises:
            StorageError: If the handle escapes the root or removal fails.
        """
        try:
            return await run_in_threadpool(self._remove, document_ref)
        except OSError as e:
            logger.error("document_delete_failed", ref=document_ref, error=str(e))
            raise StorageError("Document storage is unavailable") from e

    def _resolve(self, document_ref: str) -> Path:
        path = (self._base_path / document_ref).resolve()
        if self._base_path not in path.parents:
            raise StorageError(f"Document handle outside storage root: {document_ref}")
        return path

    def _write(self, document_ref: str, content: bytes) -> None:
        path = self._resolve(document_ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def _remove(self, document_ref: str) -> bool:
        path = self._resolve(document_ref)
        if not path.exists():
            return False
        path.unlink()
        return True
