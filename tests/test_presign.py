from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from imagebed.errors import UploadRejected
from imagebed.models import UploadFileItem
from imagebed.presign import build_object_key, clean_folder, presign_batch, sanitize_filename, validate_batch
from imagebed.storage import ObjectStore

from conftest import make_s3_session, make_settings


def upload(name="a.jpg", size=10, **extra):
    return UploadFileItem(filename=name, content_type="image/jpeg", size=size, **extra)


def test_sanitize_filename():
    assert sanitize_filename("héllo wörld!.JPG") == "h_llo_w_rld_.JPG"
    assert sanitize_filename("ok_name-1.2.png") == "ok_name-1.2.png"


def test_clean_folder():
    assert clean_folder(" /albums/2026/ ") == "albums/2026"
    assert clean_folder("///") is None
    assert clean_folder("") is None
    assert clean_folder(None) is None


def test_build_object_key_layout():
    now = datetime(2026, 3, 12, 23, 59, tzinfo=timezone.utc)
    assert build_object_key("a b.jpg", now=now, suffix="u1") == "2026-03-12/u1-a_b.jpg"
    assert build_object_key("a.jpg", folder="trips", now=now, suffix="u1") == "2026-03-12/trips/u1-a.jpg"


def test_build_object_key_is_unique_for_same_name():
    keys = {build_object_key("same.jpg") for _ in range(50)}
    assert len(keys) == 50


def test_validate_batch():
    settings = make_settings(MAX_FILES_PER_UPLOAD=2, MAX_FILE_SIZE=100)
    validate_batch([upload(size=100), upload()], settings)

    with pytest.raises(UploadRejected, match="At most 2 files"):
        validate_batch([upload()] * 3, settings)
    with pytest.raises(UploadRejected, match="big.jpg exceeds"):
        validate_batch([upload(), upload("big.jpg", size=101)], settings)


@pytest.mark.asyncio
async def test_presign_batch_passes_metadata(store, monkeypatch):
    calls = []

    async def capture(key, content_type, metadata, s3=None):
        calls.append((key, content_type, metadata))
        return {"signed_url": "https://signed/" + key, "public_url": store.public_url(key), "headers": {}}

    monkeypatch.setattr(store, "presign_put", capture)
    items = await presign_batch(store, [upload("x.jpg", tags=["a", "b"], folder="/f/", exif="ISO 100")])

    key, content_type, metadata = calls[0]
    assert items[0].key == key
    assert key.split("/")[1] == "f"
    assert content_type == "image/jpeg"
    assert metadata == {"tags": "a,b", "folder": "f", "exif": "ISO 100", "originalname": "x.jpg"}


@pytest.mark.asyncio
async def test_presign_batch_signs_with_one_client():
    s3 = AsyncMock()
    s3.generate_presigned_url.return_value = "https://signed.example/put"
    session = make_s3_session(s3)

    items = await presign_batch(
        ObjectStore(make_settings(), session=session),
        [upload("a.jpg"), upload("b.jpg"), upload("c.jpg")],
    )

    assert len(items) == 3
    assert len({item.key for item in items}) == 3
    assert s3.generate_presigned_url.await_count == 3
    assert session.client.call_count == 1
