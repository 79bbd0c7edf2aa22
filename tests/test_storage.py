import base64

import httpx
import pytest

from comicgen.services.storage import (
    AUDIO_BUCKET,
    IMAGES_BUCKET,
    BucketStore,
    panel_object_path,
)


@pytest.fixture()
def store(tmp_path):
    return BucketStore(root_dir=str(tmp_path / "media"), public_base_url="http://localhost:3000/")


def test_upload_writes_object_and_returns_public_url(store, tmp_path):
    path = panel_object_path("user_1", "comic_1", 2, "png")
    result = store.upload(IMAGES_BUCKET, path, b"png", "image/png")

    assert result.error is None
    assert result.url == "http://localhost:3000/media/comic-images/user_1/comic_1/panel_2.png"
    assert (tmp_path / "media" / IMAGES_BUCKET / "user_1" / "comic_1" / "panel_2.png").read_bytes() == b"png"


def test_upload_upserts_unless_disabled(store):
    store.upload(IMAGES_BUCKET, "u/c/panel_1.png", b"one", "image/png")
    assert store.upload(IMAGES_BUCKET, "u/c/panel_1.png", b"two", "image/png").error is None

    result = store.upload(IMAGES_BUCKET, "u/c/panel_1.png", b"three", "image/png", upsert=False)
    assert result.url is None
    assert "already exists" in result.error


@pytest.mark.parametrize("path", ["../escape.png", "u/../../escape.png", "/abs.png", "", "u\\c.png"])
def test_rejects_unsafe_paths(store, path):
    result = store.upload(IMAGES_BUCKET, path, b"x", "image/png")
    assert result.url is None
    assert result.error


def test_rejects_unknown_bucket(store):
    assert "Unknown bucket" in store.upload("secrets", "a.png", b"x", "image/png").error


def test_audio_from_base64_strips_data_url(store):
    payload = "data:audio/wav;base64," + base64.b64encode(b"RIFF").decode()
    result = store.upload_audio_from_base64(payload, "u/c/panel_1.wav")

    assert result.url == "http://localhost:3000/media/comic-audio/u/c/panel_1.wav"
    assert store.list(AUDIO_BUCKET, "u/c").files == ["u/c/panel_1.wav"]


def test_audio_from_invalid_base64(store):
    result = store.upload_audio_from_base64("not base64!!", "u/c/panel_1.wav")
    assert result.url is None
    assert result.error.startswith("Invalid base64 audio")


def test_list_and_remove(store):
    store.upload(IMAGES_BUCKET, "u/c/panel_1.png", b"1", "image/png")
    store.upload(IMAGES_BUCKET, "u/c/panel_2.png", b"2", "image/png")

    assert store.list(IMAGES_BUCKET, "u/c").files == ["u/c/panel_1.png", "u/c/panel_2.png"]
    assert store.remove(IMAGES_BUCKET, ["u/c/panel_1.png", "u/c/missing.png"]).error is None
    assert store.list(IMAGES_BUCKET, "u/c").files == ["u/c/panel_2.png"]
    assert store.list(IMAGES_BUCKET, "nobody").files == []
    assert store.remove(IMAGES_BUCKET, ["../x"]).error


def test_owns_url(store):
    assert store.owns_url("http://localhost:3000/media/comic-images/u/c/panel_1.png")
    assert not store.owns_url("http://localhost:8000/output/images/panel_1.png")


@pytest.mark.anyio
async def test_upload_image_from_url(store):
    def handler(request):
        if request.url.path == "/missing.png":
            return httpx.Response(404)
        return httpx.Response(200, content=b"remote png", headers={"content-type": "image/png"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        ok = await store.upload_image_from_url("http://backend/output/images/p1.png", "u/c/panel_1.png", http)
        missing = await store.upload_image_from_url("http://backend/missing.png", "u/c/panel_2.png", http)

    assert ok.url.endswith("/comic-images/u/c/panel_1.png")
    assert missing.url is None
    assert missing.error.startswith("Failed to download image")


def test_list_bucket_root_returns_top_level_folders(store):
    store.upload(IMAGES_BUCKET, "user_b/c/panel_1.png", b"1", "image/png")
    store.upload(IMAGES_BUCKET, "user_a/c/panel_1.png", b"1", "image/png")

    result = store.list(IMAGES_BUCKET, "")

    assert result.error is None
    assert result.files == ["user_a", "user_b"]
    assert store.list(IMAGES_BUCKET, "/").files == ["user_a", "user_b"]
    assert store.list(AUDIO_BUCKET).files == []
    assert "Unknown bucket" in store.list("secrets", "").error
