"""
DocDigest Backend: Upload Storage Service
===========================================

What:  Validates uploaded documents and holds them on disk for exactly the
       duration of one processing request.
Why:   Parsers need a real file on disk, but nothing the user uploads
       should outlive the request that processed it.
How:   Extension and size checks, then an async write (aiofiles) under a
       date directory with a UUID filename. `temporary_upload()` is an async
       context manager whose exit always deletes the file.
Who:   ProcessingOrchestrator, as the first step of every upload.

Security Model:
    1. Extension check:  only pdf, txt, docx, rtf, odt are accepted
    2. Size check:       Content-Length first, then the actual byte count
    3. UUID filename:    no user input ever reaches the file system path
    4. Short lifetime:   the stored copy is removed on every exit path

    Content sniffing is left to the extractors: a renamed file fails to parse
    and surfaces as ExtractionError.

Directory Structure:
    uploads/
    └── 2024/01/15/
        ├── a1b2c3d4-....pdf
        └── e5f6a7b8-....odt
"""

import logging
import os
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional, Tuple

import aiofiles

from app.config import settings
from app.exceptions import FileStorageError, UnsupportedFormatError, ValidationError
from app.services.text_extractor import SUPPORTED_FORMATS, format_from_filename

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredUpload:
    path: str
    original_filename: str
    file_format: str
    size: int


class FileService:
    """
    Manages the short lifecycle of an uploaded document.

    Lifecycle:
        1. validate_extension()  → normalized format ("pdf", "odt", ...)
        2. validate_size()       → rejects empty and oversized uploads
        3. store_file()          → date directory + UUID name
        4. cleanup_file()        → always, via temporary_upload()
    """

    def __init__(self, upload_root: Optional[str] = None):
        """
        Args:
            upload_root: Override the default upload directory (used in tests).
        """
        self.upload_root = Path(upload_root or settings.upload_tmp_dir).resolve()
        self.upload_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with upload_root=%s", self.upload_root)

    def validate_extension(self, filename: str) -> str:
        """
        Returns the normalized format (lowercase, no dot).

        Raises:
            ValidationError: no filename at all
            UnsupportedFormatError: extension is not a supported document format
        """
        if not filename:
            raise ValidationError(message="No file was uploaded.", field="file")

        file_format = format_from_filename(filename)
        if file_format not in SUPPORTED_FORMATS:
            raise UnsupportedFormatError(file_format, supported=list(SUPPORTED_FORMATS))
        return file_format

    def validate_size(self, content_length: Optional[int], actual_size: int) -> None:
        """
        Content-Length is checked before the body is trusted; the actual size
        catches clients that misreport it.
        """
        max_mb = settings.max_file_size / (1024 * 1024)

        if content_length and content_length > settings.max_file_size:
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB. Please upload a smaller document.",
                field="file",
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )

        if actual_size == 0:
            raise ValidationError(message="The uploaded file is empty.", field="file")

        if actual_size > settings.max_file_size:
            raise ValidationError(
                message=f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field="file",
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    def _generate_storage_path(self, file_format: str) -> Tuple[Path, str]:
        now = datetime.now(timezone.utc)
        relative_path = f"{now.strftime('%Y/%m/%d')}/{uuid.uuid4()}.{file_format}"
        return self.upload_root / relative_path, relative_path

    async def store_file(self, content: bytes, file_format: str) -> str:
        """
        Write validated content to disk and return the absolute path.

        Raises:
            FileStorageError: directory creation or write failed
        """
        absolute_path, relative_path = self._generate_storage_path(file_format)

        try:
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store upload at %s: %s", absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save the uploaded document. Please try again.",
                context={"path": relative_path, "os_error": str(e)},
            ) from e

        logger.info("Upload stored: %s (%d bytes)", relative_path, len(content))
        return str(absolute_path)

    async def cleanup_file(self, file_path: str) -> None:
        """
        Best-effort delete. A missing file is fine; other errors are logged
        and not raised, since cleanup runs on exit paths that already carry
        their own outcome.
        """
        path = Path(file_path)
        try:
            os.remove(path)
            logger.debug("Removed upload: %s", path.name)
        except FileNotFoundError:
            logger.debug("Upload already gone: %s", path.name)
        except OSError as e:
            logger.warning("Failed to remove upload %s: %s", path.name, str(e))

    @asynccontextmanager
    async def temporary_upload(
        self,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> AsyncIterator[StoredUpload]:
        """
        Validate, store, yield, and always delete an upload.

        Usage:
            async with file_service.temporary_upload(name, data) as upload:
                result = await text_extractor.extract_file(upload.path, upload.file_format)
        """
        file_format = self.validate_extension(filename)
        self.validate_size(content_length, len(content))
        path = await self.store_file(content, file_format)
        try:
            yield StoredUpload(
                path=path,
                original_filename=Path(filename).name,
                file_format=file_format,
                size=len(content),
            )
        finally:
            await self.cleanup_file(path)


# ── Singleton Instance ────────────────────────────────────────────────────
file_service = FileService()
