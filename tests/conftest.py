from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError
from httpx import ASGITransport, AsyncClient

from imagebed.auth import SESSION_COOKIE_NAME, create_session_token
from imagebed.config import Settings
from imagebed.main import create_app
from imagebed.order_store import OrderStore
from imagebed.ratelimit import RateLimiter
from imagebed.storage import ListedObject, ObjectPage, ObjectStore, encode_metadata_value

TEST_BUCKET = "test-images-bucket"
NOW = datetime(2026, 3, 12, 9, 30, tzinfo=timezone.utc)


def client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeObjectStore(ObjectStore):
    """In-memory bucket with the same async surface as ObjectStore."""

    def __init__(self, settings: Settings):
        super().__init__(settings, session=MagicMock())
        self.objects: Dict[str, dict] = {}
        self.texts: Dict[str, str] = {}
        self.failing_heads = set()
        self.list_calls: List[dict] = []

    def add(self, key: str, uploaded_at: datetime = NOW, size: int = 100, **metadata: str) -> None:
        self.objects[key] = {
            "obj": ListedObject(key=key, size=size, last_modified=uploaded_at),
            "metadata": {name: encode_metadata_value(value) for name, value in metadata.items()},
        }

    async def list_page(self, limit: int, cursor: Optional[str] = None, s3=None) -> ObjectPage:
        self.list_calls.append({"limit": limit, "cursor": cursor})
        keys = sorted(self.objects)
        start = int(cursor) if cursor else 0
        chunk = keys[start:start + limit]
        truncated = start + limit < len(keys)
        return ObjectPage(
            objects=[self.objects[key]["obj"] for key in chunk],
            next_cursor=str(start + limit) if truncated else None,
            is_truncated=truncated,
        )

    async def head_metadata(self, key: str, s3=None) -> Dict[str, str]:
        if key in self.failing_heads or key not in self.objects:
            raise client_error("404")
        return dict(self.objects[key]["metadata"])

    async def delete_many(self, keys: List[str]) -> None:
        for key in keys:
            self.objects.pop(key, None)

    async def get_text(self, key: str) -> Optional[str]:
        return self.texts.get(key)

    async def put_text(self, key: str, value: str, content_type: str = "application/json") -> None:
        self.texts[key] = value

    async def presign_put(self, key: str, content_type: str, metadata: Dict[str, str], s3=None) -> Dict[str, object]:
        return {
            "signed_url": f"https://signed.example/{key}?X-Amz-Expires={self.settings.PRESIGN_EXPIRES_SECONDS}",
            "public_url": self.public_url(key),
            "headers": {"Content-Type": content_type},
        }


class MemoryOrderBackend:
    name = "kv"

    def __init__(self, document: Optional[str] = None):
        self.document = document
        self.writes = 0

    async def read(self) -> Optional[str]:
        return self.document

    async def write(self, document: str) -> None:
        self.writes += 1
        self.document = document


def make_settings(**overrides) -> Settings:
    values = {
        "ENV": "test",
        "ADMIN_PASSWORD": "hunter2",
        "SESSION_SECRET": "test-session-secret",
        "BUCKET_NAME": TEST_BUCKET,
        "PUBLIC_DOMAIN": "img.example.com",
        "ORDER_TABLE_NAME": "test-order-table",
        "MAX_FILES_PER_UPLOAD": 3,
        "MAX_FILE_SIZE": 1024,
        "UPLOAD_RATE_LIMIT": 5,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_s3_session(s3: AsyncMock) -> MagicMock:
    """A stand-in aioboto3.Session whose client() yields the given mock."""
    session = MagicMock()
    session.client.return_value.__aenter__.return_value = s3
    session.client.return_value.__aexit__.return_value = False
    return session


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store(settings):
    return FakeObjectStore(settings)


@pytest.fixture
def order_backend():
    return MemoryOrderBackend()


@pytest.fixture
def order_store(order_backend):
    return OrderStore(order_backend)


@pytest.fixture
def app(settings, store, order_store):
    return create_app(settings, object_store=store, order_store=order_store, rate_limiter=RateLimiter())


@pytest_asyncio.fixture
async def anon_client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def client(app, settings):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        ac.cookies.set(SESSION_COOKIE_NAME, create_session_token(settings))
        yield ac


@pytest.fixture
def days_ago():
    def _at(days: float) -> datetime:
        return NOW - timedelta(days=days)
    return _at
