"""Object storage backend tests."""

import uuid

import pytest

from warden.config import settings
from warden.storage import StorageError, public_url
from warden.storage.local import LocalStorage


@pytest.mark.asyncio
async def test_local_put_replaces_object(tmp_path):
    storage = LocalStorage(str(tmp_path))

    await storage.put("avatars/u1", b"first", "image/png")
    obj = await storage.put("avatars/u1", b"second", "image/png")

    assert obj.size == len(b"second")
    assert (tmp_path / "avatars" / "u1").read_bytes() == b"second"
    # Only the object itself, no leftover temp files
    assert [p.name for p in (tmp_path / "avatars").iterdir()] == ["u1"]


@pytest.mark.asyncio
async def test_local_delete_and_exists(tmp_path):
    storage = LocalStorage(str(tmp_path))
    await storage.put("avatars/u1", b"data", "image/png")

    assert await storage.exists("avatars/u1")
    assert await storage.delete("avatars/u1") is True
    assert not await storage.exists("avatars/u1")
    assert await storage.delete("avatars/u1") is False


@pytest.mark.asyncio
async def test_local_rejects_keys_outside_root(tmp_path):
    storage = LocalStorage(str(tmp_path / "objects"))
    with pytest.raises(StorageError):
        await storage.put("../escape", b"data", "image/png")


def test_public_url():
    assert public_url(None, None, "/media") is None
    assert public_url("avatars/u1", "abc", "/media/") == "/media/avatars/u1?v=abc"
    assert public_url("avatars/u1", None, "https://cdn.example.com") == (
        "https://cdn.example.com/avatars/u1"
    )


@pytest.mark.asyncio
async def test_local_records_content_type(tmp_path):
    storage = LocalStorage(str(tmp_path))
    await storage.put("avatars/u1", b"GIF89a...", "image/gif")

    assert storage.read_content_type("avatars/u1") == "image/gif"
    assert storage.read_content_type("avatars/missing") is None

    await storage.delete("avatars/u1")
    assert storage.read_content_type("avatars/u1") is None


@pytest.mark.asyncio
async def test_media_mount_serves_stored_content_type(client):
    """Extensionless keys still come back as the image type they were stored as."""
    storage = LocalStorage(settings.storage_local_dir)
    key = f"avatars/{uuid.uuid4()}"
    data = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
    await storage.put(key, data, "image/png")

    r = await client.get(public_url(key, "v1", settings.storage_public_base_url))
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("image/png")
    assert r.headers["x-content-type-options"] == "nosniff"
    assert r.content == data


@pytest.mark.asyncio
async def test_media_mount_hides_metadata(client):
    storage = LocalStorage(settings.storage_local_dir)
    key = f"avatars/{uuid.uuid4()}"
    await storage.put(key, b"\x89PNG\r\n\x1a\n", "image/png")

    r = await client.get(f"{settings.storage_public_base_url}/.meta/{key}")
    assert r.status_code == 404
