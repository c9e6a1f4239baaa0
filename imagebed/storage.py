import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import quote, unquote

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from imagebed.config import Settings
from imagebed.errors import StorageError

logger = logging.getLogger(__name__)

METADATA_FIELDS = ("tags", "folder", "exif", "originalname")


def encode_metadata_value(value: str) -> str:
    # S3 user metadata must be ASCII
    return quote(value, safe="-_.!~*'()")


def decode_metadata_value(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError:
        return value


@dataclass
class ListedObject:
    key: str
    size: int
    last_modified: datetime


@dataclass
class ObjectPage:
    objects: List[ListedObject]
    next_cursor: Optional[str]
    is_truncated: bool


class ObjectStore:
    """
    Thin async wrapper over an S3-compatible bucket.

    One instance per process, built from Settings and handed to the
    handlers through dependency injection.
    """

    def __init__(self, settings: Settings, session: Optional[aioboto3.Session] = None):
        self.settings = settings
        self.session = session or aioboto3.Session()

    @property
    def bucket(self) -> str:
        return self.settings.BUCKET_NAME

    def client(self):
        return self.session.client("s3", **self.settings.client_kwargs())

    @asynccontextmanager
    async def scope(self, s3=None):
        """Yields `s3` when given, else one fresh client for the whole block."""
        if s3 is not None:
            yield s3
            return
        async with self.client() as client:
            yield client

    def public_url(self, key: str) -> str:
        return f"{self.settings.PUBLIC_DOMAIN}/{key}"

    async def list_page(self, limit: int, cursor: Optional[str] = None, s3=None) -> ObjectPage:
        params = {"Bucket": self.bucket, "MaxKeys": limit}
        if cursor:
            params["ContinuationToken"] = cursor
        try:
            async with self.scope(s3) as client:
                response = await client.list_objects_v2(**params)
        except (ClientError, BotoCoreError) as e:
            logger.error("Listing bucket %s failed: %s", self.bucket, e)
            raise StorageError("Failed to list images", str(e)) from e

        objects = [
            ListedObject(
                key=entry["Key"],
                size=entry.get("Size", 0),
                last_modified=entry.get("LastModified") or datetime.now(timezone.utc),
            )
            for entry in response.get("Contents", [])
            if entry.get("Key")
        ]
        return ObjectPage(
            objects=objects,
            next_cursor=response.get("NextContinuationToken"),
            is_truncated=bool(response.get("IsTruncated")),
        )

    async def head_metadata(self, key: str, s3=None) -> Dict[str, str]:
        """Returns the user metadata of an object. Raises ClientError as-is."""
        async with self.scope(s3) as client:
            response = await client.head_object(Bucket=self.bucket, Key=key)
        # boto lower-cases metadata keys
        return {k.lower(): v for k, v in response.get("Metadata", {}).items()}

    async def delete_many(self, keys: List[str]) -> None:
        if not keys:
            return
        try:
            async with self.client() as s3:
                response = await s3.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
                )
        except (ClientError, BotoCoreError) as e:
            logger.error("Deleting %d objects failed: %s", len(keys), e)
            raise StorageError("Failed to delete images", str(e)) from e

        errors = response.get("Errors", [])
        if errors:
            detail = ", ".join(f"{err.get('Key')}: {err.get('Code')}" for err in errors)
            logger.error("Some objects could not be deleted: %s", detail)
            raise StorageError("Failed to delete images", detail)

    async def get_text(self, key: str) -> Optional[str]:
        """Reads an object as UTF-8 text, None when it does not exist."""
        try:
            async with self.client() as s3:
                response = await s3.get_object(Bucket=self.bucket, Key=key)
                async with response["Body"] as stream:
                    body = await stream.read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise StorageError(f"Failed to read {key}", str(e)) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read {key}", str(e)) from e
        return body.decode("utf-8")

    async def put_text(self, key: str, value: str, content_type: str = "application/json") -> None:
        try:
            async with self.client() as s3:
                await s3.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=value.encode("utf-8"),
                    ContentType=content_type,
                )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to write {key}", str(e)) from e

    async def presign_put(self, key: str, content_type: str, metadata: Dict[str, str], s3=None) -> Dict[str, object]:
        """
        Signs a PUT for `key`. The client has to send the returned headers
        unchanged, they are part of the signature.
        """
        encoded = {name: encode_metadata_value(value) for name, value in metadata.items()}
        try:
            async with self.scope(s3) as client:
                url = await client.generate_presigned_url(
                    "put_object",
                    Params={
                        "Bucket": self.bucket,
                        "Key": key,
                        "ContentType": content_type,
                        "Metadata": encoded,
                    },
                    ExpiresIn=self.settings.PRESIGN_EXPIRES_SECONDS,
                )
        except (ClientError, BotoCoreError) as e:
            logger.error("Presigning %s failed: %s", key, e)
            raise StorageError("Failed to presign upload", str(e)) from e

        headers = {"Content-Type": content_type}
        headers.update({f"x-amz-meta-{name}": value for name, value in encoded.items()})
        return {
            "signed_url": url,
            "public_url": self.public_url(key),
            "headers": headers,
        }

    async def ensure_bucket(self) -> None:
        """Creates the bucket when missing. Used to bootstrap LocalStack."""
        async with self.client() as s3:
            try:
                await s3.head_bucket(Bucket=self.bucket)
                logger.info("Bucket %s exists.", self.bucket)
            except ClientError:
                logger.info("Creating bucket %s...", self.bucket)
                await s3.create_bucket(Bucket=self.bucket)
