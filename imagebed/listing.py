"""
Listing pipeline: one page of bucket entries, enriched with per-object
metadata, filtered and sorted newest first.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from imagebed.errors import StorageError
from imagebed.models import ImageListResponse, ImageRecord
from imagebed.storage import ListedObject, ObjectStore, decode_metadata_value

logger = logging.getLogger(__name__)

# Keys under this prefix hold service data (the order document), not images.
RESERVED_PREFIX = ".imagebed/"


def parse_filename(key: str) -> str:
    return key.split("/")[-1] or key


def parse_folder(key: str) -> Optional[str]:
    chunks = key.split("/")
    if len(chunks) <= 2:
        return None
    return chunks[1] or None


def parse_tags(raw: str) -> List[str]:
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


def to_record(obj: ListedObject, metadata: Dict[str, str], public_url: str) -> ImageRecord:
    return ImageRecord(
        key=obj.key,
        url=public_url,
        filename=decode_metadata_value(metadata.get("originalname")) or parse_filename(obj.key),
        size=obj.size,
        uploaded_at=obj.last_modified.isoformat(),
        tags=parse_tags(decode_metadata_value(metadata.get("tags"))),
        folder=decode_metadata_value(metadata.get("folder")) or parse_folder(obj.key),
        exif=decode_metadata_value(metadata.get("exif")) or None,
    )


def matches(record: ImageRecord, search: Optional[str] = None, tag: Optional[str] = None) -> bool:
    if search:
        needle = search.lower()
        found = needle in record.filename.lower() or any(needle in t.lower() for t in record.tags)
        if not found:
            return False
    if tag and tag not in record.tags:
        return False
    return True


async def _fetch_metadata(store: ObjectStore, key: str, s3) -> Dict[str, str]:
    try:
        return await store.head_metadata(key, s3=s3)
    except ClientError as e:
        logger.warning("Metadata lookup for %s failed, using key fallbacks: %s", key, e)
        return {}


async def list_images(
    store: ObjectStore,
    limit: int = 24,
    cursor: Optional[str] = None,
    search: Optional[str] = None,
    tag: Optional[str] = None,
) -> ImageListResponse:
    # one client for the page and all of its metadata lookups
    try:
        async with store.client() as s3:
            page = await store.list_page(limit=limit, cursor=cursor, s3=s3)
            objects = [obj for obj in page.objects if not obj.key.startswith(RESERVED_PREFIX)]
            metadata = await asyncio.gather(*(_fetch_metadata(store, obj.key, s3) for obj in objects))
    except BotoCoreError as e:
        logger.error("Enriching listing failed: %s", e)
        raise StorageError("Failed to list images", str(e)) from e

    entries = [
        (obj.last_modified, to_record(obj, meta, store.public_url(obj.key)))
        for obj, meta in zip(objects, metadata)
    ]
    search = search if search and search.strip() else None
    tag = tag if tag and tag.strip() else None
    filtered = [entry for entry in entries if matches(entry[1], search, tag)]
    filtered.sort(key=lambda entry: entry[0], reverse=True)

    return ImageListResponse(
        items=[record for _, record in filtered],
        has_more=page.is_truncated,
        next_cursor=page.next_cursor,
    )
