"""
Attachment ingestion.

Uploaded files are read concurrently, one asyncio task per file, each read
running in a worker thread.  Failures are isolated per file: a read that
raises, or a file larger than ``max_bytes``, is logged and left out of the
result while the rest of the batch continues.  Cancelling the gathering
coroutine cancels the reads still pending.

Usage (from a sync Flask view):
    attachments = ingest_uploads(request.files.getlist("files"), actor)
"""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
import uuid

from flask import current_app, has_app_context
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from protocol_desk.models.protocol import DEFAULT_MIME_TYPE, Attachment, utcnow

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


class AttachmentTooLarge(Exception):
    def __init__(self, filename: str, size: int, limit: int) -> None:
        self.filename = filename
        super().__init__(f"{filename}: {size} bytes exceeds the {limit} byte limit")


def _max_bytes() -> int:
    if has_app_context():
        return int(current_app.config.get("MAX_ATTACHMENT_BYTES", DEFAULT_MAX_ATTACHMENT_BYTES))
    return DEFAULT_MAX_ATTACHMENT_BYTES


def _mime_type(upload: FileStorage, filename: str) -> str:
    if upload.mimetype and upload.mimetype != DEFAULT_MIME_TYPE:
        return upload.mimetype
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or DEFAULT_MIME_TYPE


async def read_upload(upload: FileStorage, actor: str, max_bytes: int) -> Attachment:
    """Read one uploaded file into an Attachment (bytes kept as base64)."""
    filename = secure_filename(upload.filename or "") or "attachment"
    # read one byte past the limit so oversize files are detected without loading them whole
    content = await asyncio.to_thread(upload.stream.read, max_bytes + 1)
    if len(content) > max_bytes:
        raise AttachmentTooLarge(filename, len(content), max_bytes)
    return Attachment(
        id=uuid.uuid4().hex,
        filename=filename,
        size=len(content),
        mime_type=_mime_type(upload, filename),
        content_b64=base64.b64encode(content).decode("ascii"),
        uploaded_by=actor,
        uploaded_at=utcnow(),
    )


async def read_uploads(uploads: list[FileStorage], actor: str,
                       max_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES) -> list[Attachment]:
    """Read every upload concurrently; failed reads are omitted, order is kept."""
    results = await asyncio.gather(
        *[read_upload(u, actor, max_bytes) for u in uploads],
        return_exceptions=True,
    )

    attachments: list[Attachment] = []
    for upload, result in zip(uploads, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            logger.warning("Skipping attachment %r: %s", upload.filename, result)
            continue
        attachments.append(result)

    if len(attachments) < len(uploads):
        logger.info("Read %d of %d attachments", len(attachments), len(uploads))
    return attachments


def ingest_uploads(uploads: list[FileStorage] | None, actor: str) -> list[Attachment]:
    """Sync entry point for Flask views."""
    uploads = [u for u in uploads or [] if u and u.filename]
    if not uploads:
        return []
    return asyncio.run(read_uploads(uploads, actor, _max_bytes()))
