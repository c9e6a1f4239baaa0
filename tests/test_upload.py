import re

import pytest
from httpx import AsyncClient


def file_item(name="photo.jpg", size=512, **extra):
    item = {"filename": name, "contentType": "image/jpeg", "size": size}
    item.update(extra)
    return item


@pytest.mark.asyncio
async def test_presign_returns_one_url_per_file(client: AsyncClient):
    files = [file_item("a.jpg"), file_item("a.jpg"), file_item("My Photo (1).png", folder="/trips/")]
    response = await client.post("/upload/presign", json={"files": files})
    assert response.status_code == 200
    data = response.json()

    assert data["remaining"] == 4
    keys = [item["key"] for item in data["items"]]
    assert len(set(keys)) == 3
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}/[0-9a-f-]{36}-a\.jpg", keys[0])
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}/trips/[0-9a-f-]{36}-My_Photo__1_\.png", keys[2])
    for item in data["items"]:
        assert item["signedUrl"].startswith("https://signed.example/")
        assert item["publicUrl"] == f"https://img.example.com/{item['key']}"
        assert item["headers"]["Content-Type"] in ("image/jpeg",)


@pytest.mark.asyncio
async def test_presign_rejects_too_many_files(client: AsyncClient):
    response = await client.post("/upload/presign", json={"files": [file_item()] * 4})
    assert response.status_code == 400
    assert response.json() == {"message": "At most 3 files per upload"}


@pytest.mark.asyncio
async def test_presign_rejects_whole_batch_on_oversized_file(client: AsyncClient):
    files = [file_item("ok.jpg"), file_item("huge.jpg", size=4096)]
    response = await client.post("/upload/presign", json={"files": files})
    assert response.status_code == 400
    assert response.json() == {"message": "huge.jpg exceeds the size limit"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"files": []},
        {"files": [file_item(size=0)]},
        {"files": [file_item(name="")]},
        {"files": [{"filename": "a.jpg", "size": 10}]},
    ],
)
async def test_presign_validates_payload(client: AsyncClient, payload):
    response = await client.post("/upload/presign", json=payload)
    assert response.status_code == 400
    assert response.json() == {"message": "Invalid payload"}


@pytest.mark.asyncio
async def test_presign_is_rate_limited_per_client(client: AsyncClient):
    headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
    for expected in (4, 3, 2, 1, 0):
        response = await client.post("/upload/presign", json={"files": [file_item()]}, headers=headers)
        assert response.status_code == 200
        assert response.json()["remaining"] == expected

    response = await client.post("/upload/presign", json={"files": [file_item()]}, headers=headers)
    assert response.status_code == 429
    assert response.json() == {"message": "Too many uploads, try again later"}

    other = await client.post("/upload/presign", json={"files": [file_item()]}, headers={"X-Forwarded-For": "198.51.100.1"})
    assert other.status_code == 200
