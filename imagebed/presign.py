import asyncio
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from botocore.exceptions import BotoCoreError

from imagebed.config import Settings
from imagebed.errors import StorageError, UploadRejected
from imagebed.models import PresignedItem, UploadFileItem
from imagebed.storage import ObjectStore

logger = logging.getLogger(__name__)

UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")


def sanitize_filename(filename: str) -> str:
    return UNSAFE_FILENAME_CHARS.sub("_", filename)


def clean_folder(folder: Optional[str]) -> Optional[str]:
    if not folder:
        return None
    return folder.strip().strip("/") or None


def build_object_key(
    filename: str,
    folder: Optional[str] = None,
    now: Optional[datetime] = None,
    suffix: Optional[str] = None,
) -> str:
    """
    Storage key for an upload: "<date>/[<folder>/]<uuid>-<filename>".

    The random part keeps keys unique even for the same file uploaded
    twice on the same day.
    """
    now = now or datetime.now(timezone.utc)
    suffix = suffix or str(uuid.uuid4())
    parts = [now.strftime("%Y-%m-%d")]
    if folder:
        parts.append(folder)
    parts.append(f"{suffix}-{sanitize_filename(filename)}")
    return "/".join(parts)


def validate_batch(files: List[UploadFileItem], settings: Settings) -> None:
    if len(files) > settings.MAX_FILES_PER_UPLOAD:
        raise UploadRejected(f"At most {settings.MAX_FILES_PER_UPLOAD} files per upload")
    for file in files:
        if file.size > settings.MAX_FILE_SIZE:
            raise UploadRejected(f"{file.filename} exceeds the size limit")


async def presign_file(store: ObjectStore, file: UploadFileItem, s3=None) -> PresignedItem:
    folder = clean_folder(file.folder)
    key = build_object_key(file.filename, folder)
    signed = await store.presign_put(
        key,
        file.content_type,
        {
            "tags": ",".join(file.tags or []),
            "folder": folder or "",
            "exif": file.exif or "",
            "originalname": file.filename,
        },
        s3=s3,
    )
    return PresignedItem(key=key, **signed)


async def presign_batch(store: ObjectStore, files: List[UploadFileItem]) -> List[PresignedItem]:
    """Signs every file of an already validated batch with one client."""
    try:
        async with store.client() as s3:
            return list(await asyncio.gather(*(presign_file(store, file, s3) for file in files)))
    except BotoCoreError as e:
        logger.error("Opening a client for presigning failed: %s", e)
        raise StorageError("Failed to presign upload", str(e)) from e
