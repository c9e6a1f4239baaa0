import json
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from imagebed.config import Settings
from imagebed.errors import OrderStoreError, StorageError
from imagebed.models import OrderDocument, OrderGroups
from imagebed.ordering import empty_groups, groups_from_document, normalize_groups, prune_groups
from imagebed.storage import ObjectStore

logger = logging.getLogger(__name__)


def select_backend(settings: Settings) -> str:
    """
    Picks where the order document lives. A "kv" preference without a
    table configured falls back to the object store.
    """
    kv_ready = bool(settings.ORDER_TABLE_NAME)
    preferred = settings.ORDER_STORAGE_BACKEND
    if preferred == "kv" and kv_ready:
        return "kv"
    if preferred == "s3":
        return "s3"
    return "kv" if kv_ready else "s3"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class DynamoOrderBackend:
    """Keeps the order document as a JSON string in one DynamoDB item."""

    name = "kv"

    def __init__(self, settings: Settings, session: aioboto3.Session):
        self.settings = settings
        self.session = session

    def resource(self):
        return self.session.resource("dynamodb", **self.settings.client_kwargs())

    async def read(self) -> Optional[str]:
        async with self.resource() as dynamo:
            table = await dynamo.Table(self.settings.ORDER_TABLE_NAME)
            response = await table.get_item(Key={"id": self.settings.ORDER_KV_KEY})
        item = response.get("Item")
        if not item:
            return None
        return item.get("document") or None

    async def write(self, document: str) -> None:
        async with self.resource() as dynamo:
            table = await dynamo.Table(self.settings.ORDER_TABLE_NAME)
            await table.put_item(Item={"id": self.settings.ORDER_KV_KEY, "document": document})

    async def ensure_table(self) -> None:
        async with self.resource() as dynamo:
            table = await dynamo.Table(self.settings.ORDER_TABLE_NAME)
            try:
                await table.load()
                logger.info("Table %s exists.", self.settings.ORDER_TABLE_NAME)
            except ClientError:
                logger.info("Creating table %s...", self.settings.ORDER_TABLE_NAME)
                await dynamo.create_table(
                    TableName=self.settings.ORDER_TABLE_NAME,
                    KeySchema=[{"AttributeName": "id", "KeyType": "HASH"}],
                    AttributeDefinitions=[{"AttributeName": "id", "AttributeType": "S"}],
                    BillingMode="PAY_PER_REQUEST",
                )


class ObjectOrderBackend:
    """Keeps the order document as a JSON object next to the images."""

    name = "s3"

    def __init__(self, settings: Settings, store: ObjectStore):
        self.settings = settings
        self.store = store

    async def read(self) -> Optional[str]:
        return await self.store.get_text(self.settings.ORDER_OBJECT_KEY)

    async def write(self, document: str) -> None:
        await self.store.put_text(self.settings.ORDER_OBJECT_KEY, document)


class OrderStore:
    def __init__(self, backend):
        self.backend = backend

    @classmethod
    def from_settings(cls, settings: Settings, store: ObjectStore) -> "OrderStore":
        if select_backend(settings) == "kv":
            backend = DynamoOrderBackend(settings, store.session)
        else:
            backend = ObjectOrderBackend(settings, store)
        logger.info("Order documents are stored in backend %s", backend.name)
        return cls(backend)

    @property
    def backend_name(self) -> str:
        return self.backend.name

    async def load(self) -> OrderDocument:
        try:
            raw = await self.backend.read()
            saved = json.loads(raw) if raw else None
        except (ClientError, BotoCoreError, StorageError, ValueError) as e:
            logger.error("Reading the order document from %s failed: %s", self.backend_name, e)
            raise OrderStoreError("Failed to load image order", _detail(e)) from e

        if not isinstance(saved, dict):
            return OrderDocument(groups=OrderGroups(**empty_groups()), updated_at=None, backend=self.backend_name)
        updated_at = saved.get("updatedAt")
        return OrderDocument(
            groups=OrderGroups(**groups_from_document(saved)),
            updated_at=updated_at if isinstance(updated_at, str) else None,
            backend=self.backend_name,
        )

    async def save(self, groups: Mapping[str, Iterable[str]]) -> OrderDocument:
        """Replaces the stored document with the normalized groups."""
        payload = {"groups": normalize_groups(groups), "updatedAt": utc_timestamp()}
        try:
            await self.backend.write(json.dumps(payload))
        except (ClientError, BotoCoreError, StorageError) as e:
            logger.error("Writing the order document to %s failed: %s", self.backend_name, e)
            raise OrderStoreError("Failed to save image order", _detail(e)) from e

        return OrderDocument(
            groups=OrderGroups(**payload["groups"]),
            updated_at=payload["updatedAt"],
            backend=self.backend_name,
        )

    async def prune(self, keys: List[str]) -> Optional[OrderDocument]:
        """Drops keys from every group. Saves only when something was removed."""
        current = await self.load()
        groups: Dict[str, List[str]] = current.groups.model_dump()
        pruned = prune_groups(groups, keys)
        if pruned == groups:
            return None
        return await self.save(pruned)


def _detail(error: Exception) -> str:
    if isinstance(error, StorageError):
        return error.detail or error.message
    return str(error)
