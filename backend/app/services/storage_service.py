"""Supabase Storage service for framework documents.

Provides the document-storage collaborator used before handing a file to
the AI service: ``storage_path -> bytes``, with the same pre-checks the
upload endpoint of the AI service would otherwise reject (missing file,
empty file, extension not allowed, oversize file).

Storage path structure:
- frameworks/{owner_id}/{filename}
"""

import asyncio
import mimetypes
from dataclasses import dataclass
from pathlib import PurePosixPath

import structlog
from supabase import Client

from app.core.config import Settings, get_settings
from app.services.exceptions import ServiceError
from app.services.supabase.client import get_supabase_client

logger = structlog.get_logger(__name__)

# Office formats that mimetypes does not always know about
_CONTENT_TYPES = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


class StorageError(ServiceError):
    """Base exception for storage operations."""

    code = "STORAGE_ERROR"
    status_code = 500


class StorageNotConfiguredError(StorageError):
    code = "STORAGE_NOT_CONFIGURED"
    status_code = 503


class DocumentNotFoundError(StorageError):
    code = "FILE_NOT_FOUND"
    status_code = 404


class EmptyDocumentError(StorageError):
    code = "EMPTY_FILE"
    status_code = 400


class UnsupportedDocumentTypeError(StorageError):
    code = "UNSUPPORTED_FILE_TYPE"
    status_code = 415


class DocumentTooLargeError(StorageError):
    code = "PAYLOAD_TOO_LARGE"
    status_code = 413


@dataclass(frozen=True)
class StoredDocument:
    """A document read from storage, ready for multipart upload."""

    filename: str
    content: bytes
    content_type: str


def content_type_for(filename: str) -> str:
    """Derive the MIME type from a filename's extension."""
    ext = PurePosixPath(filename).suffix.lower().lstrip(".")
    if ext in _CONTENT_TYPES:
        return _CONTENT_TYPES[ext]
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


class StorageService:
    """Service for Supabase Storage reads.

    Uses the service client; callers have already checked that the
    requesting user owns the framework the path belongs to.
    """

    def __init__(
        self,
        client: Client | None = None,
        settings: Settings | None = None,
    ):
        """Initialize storage service.

        Args:
            client: Optional Supabase client. Uses the shared client if not provided.
            settings: Optional settings override.
        """
        self.settings = settings or get_settings()
        self.client = client or get_supabase_client()
        self.bucket = self.settings.storage_bucket

    def validate_filename(self, storage_path: str) -> str:
        """Check the extension against the allowed set.

        Returns:
            The file name component of the path.

        Raises:
            UnsupportedDocumentTypeError: If the extension is not allowed.
        """
        filename = PurePosixPath(storage_path).name
        ext = PurePosixPath(filename).suffix.lower().lstrip(".")
        allowed = {e.lower() for e in self.settings.upload_allowed_extensions}
        if ext not in allowed:
            raise UnsupportedDocumentTypeError(
                f"Unsupported file type: .{ext or '?'}",
                {"allowed": sorted(allowed)},
            )
        return filename

    def _download(self, storage_path: str) -> bytes:
        if self.client is None:
            raise StorageNotConfiguredError("Storage client not configured")

        try:
            return self.client.storage.from_(self.bucket).download(storage_path)
        except Exception as e:
            logger.error(
                "storage_download_failed",
                storage_path=storage_path,
                error=str(e),
            )
            raise DocumentNotFoundError(
                "File not found in storage",
                {"storage_path": storage_path},
            ) from e

    async def read_document(self, storage_path: str | None) -> StoredDocument:
        """Read a framework document from storage.

        Args:
            storage_path: Path inside the storage bucket.

        Returns:
            StoredDocument with content and derived content type.

        Raises:
            StorageError: If the file is missing, empty, of a disallowed
                type, or larger than ``upload_max_mb``.
        """
        if not storage_path:
            raise DocumentNotFoundError("Framework has no stored file")

        filename = self.validate_filename(storage_path)
        content = await asyncio.to_thread(self._download, storage_path)

        if not content:
            raise EmptyDocumentError("File is empty", {"storage_path": storage_path})

        max_bytes = self.settings.upload_max_mb * 1024 * 1024
        if len(content) > max_bytes:
            raise DocumentTooLargeError(
                f"File exceeds {self.settings.upload_max_mb} MB",
                {"size": len(content), "max_bytes": max_bytes},
            )

        logger.debug(
            "storage_document_read",
            storage_path=storage_path,
            file_size=len(content),
        )
        return StoredDocument(
            filename=filename,
            content=content,
            content_type=content_type_for(filename),
        )
