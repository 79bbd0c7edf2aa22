"""Bucketed object storage on the local filesystem.

Objects live at ``<root>/<bucket>/<path>`` and are served under
``<public base><url prefix>/<bucket>/<path>``. Every operation returns a
tagged result instead of raising.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import httpx

from comicgen.core.metrics import record_media_upload

logger = logging.getLogger(__name__)

IMAGES_BUCKET = "comic-images"
AUDIO_BUCKET = "comic-audio"
BUCKETS = (IMAGES_BUCKET, AUDIO_BUCKET)

_DATA_URL_PREFIX = re.compile(r"^data:audio/\w+;base64,")


@dataclass
class UploadResult:
    url: str | None = None
    error: str | None = None


@dataclass
class RemoveResult:
    error: str | None = None


@dataclass
class ListResult:
    files: list[str] = field(default_factory=list)
    error: str | None = None


class StorageError(ValueError):
    pass


def panel_object_path(user_id: str, comic_id: str, panel_id: int, ext: str) -> str:
    return f"{user_id}/{comic_id}/panel_{panel_id}.{ext}"


class BucketStore:
    def __init__(self, root_dir: str, public_base_url: str, url_prefix: str = "/media"):
        self.root_dir = Path(root_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.url_prefix = "/" + url_prefix.strip("/")

    def _resolve(self, bucket: str, path: str) -> Path:
        if bucket not in BUCKETS:
            raise StorageError(f"Unknown bucket: {bucket}")
        if not path or path.startswith("/") or "\\" in path:
            raise StorageError(f"Invalid object path: {path!r}")
        parts = PurePosixPath(path).parts
        if any(part in ("..", ".") for part in parts):
            raise StorageError(f"Invalid object path: {path!r}")
        return self.root_dir / bucket / Path(*parts)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}{self.url_prefix}/{bucket}/{path}"

    def owns_url(self, url: str) -> bool:
        return url.startswith(f"{self.public_base_url}{self.url_prefix}/")

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        upsert: bool = True,
    ) -> UploadResult:
        try:
            target = self._resolve(bucket, path)
            if target.exists() and not upsert:
                raise StorageError(f"Object already exists: {bucket}/{path}")
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except (StorageError, OSError) as exc:
            logger.warning("storage_upload_failed bucket=%s path=%s error=%s", bucket, path, exc)
            record_media_upload(bucket, False)
            return UploadResult(error=str(exc))

        logger.info(
            "storage_upload bucket=%s path=%s content_type=%s bytes=%s",
            bucket,
            path,
            content_type,
            len(data),
        )
        record_media_upload(bucket, True)
        return UploadResult(url=self.get_public_url(bucket, path))

    async def upload_image_from_url(self, url: str, path: str, http: httpx.AsyncClient) -> UploadResult:
        try:
            resp = await http.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("storage_download_failed url=%s error=%s", url, exc)
            record_media_upload(IMAGES_BUCKET, False)
            return UploadResult(error=f"Failed to download image: {exc}")

        content_type = resp.headers.get("content-type", "image/png")
        return self.upload(IMAGES_BUCKET, path, resp.content, content_type)

    def upload_audio_from_base64(self, audio_base64: str, path: str) -> UploadResult:
        payload = _DATA_URL_PREFIX.sub("", audio_base64.strip())
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            record_media_upload(AUDIO_BUCKET, False)
            return UploadResult(error=f"Invalid base64 audio: {exc}")
        if not data:
            record_media_upload(AUDIO_BUCKET, False)
            return UploadResult(error="Invalid base64 audio: empty payload")
        return self.upload(AUDIO_BUCKET, path, data, "audio/wav")

    def remove(self, bucket: str, paths: list[str]) -> RemoveResult:
        try:
            targets = [self._resolve(bucket, path) for path in paths]
            for target in targets:
                if target.exists():
                    target.unlink()
        except (StorageError, OSError) as exc:
            return RemoveResult(error=str(exc))
        return RemoveResult()

    def list(self, bucket: str, folder: str = "") -> ListResult:
        """Files directly under ``folder``; the bucket root lists its top-level entries (user folders)."""
        prefix = folder.strip("/")
        try:
            if prefix:
                directory = self._resolve(bucket, prefix)
            elif bucket in BUCKETS:
                directory = self.root_dir / bucket
            else:
                raise StorageError(f"Unknown bucket: {bucket}")
        except StorageError as exc:
            return ListResult(error=str(exc))
        if not directory.is_dir():
            return ListResult()
        if not prefix:
            return ListResult(files=sorted(entry.name for entry in directory.iterdir()))
        files = sorted(f"{prefix}/{entry.name}" for entry in directory.iterdir() if entry.is_file())
        return ListResult(files=files)
