import logging

import httpx

from comicgen.schemas.comic import Panel
from comicgen.services.storage import AUDIO_BUCKET, IMAGES_BUCKET, BucketStore, panel_object_path

logger = logging.getLogger(__name__)


async def upload_panel_media(
    panels: list[Panel],
    comic_id: str,
    user_id: str | None,
    store: BucketStore,
    http: httpx.AsyncClient,
) -> list[Panel]:
    """Copy panel images and audio into the buckets and point the panels at the stored copies.

    Anonymous users get their panels back untouched. A failed upload keeps
    the panel's original value.
    """
    if user_id is None:
        logger.info("media_upload_skipped reason=unauthenticated panels=%s", len(panels))
        return panels

    logger.info("media_upload_started comic_id=%s panels=%s", comic_id, len(panels))
    uploaded: list[Panel] = []
    for panel in panels:
        update: dict[str, str] = {}

        if panel.image_url and not store.owns_url(panel.image_url):
            path = panel_object_path(user_id, comic_id, panel.panel_id, "png")
            result = await store.upload_image_from_url(panel.image_url, path, http)
            if result.url and not result.error:
                update["image_url"] = result.url
            else:
                logger.warning("image_upload_failed panel_id=%s error=%s", panel.panel_id, result.error)

        if panel.audio_base64 and not panel.audio_base64.startswith("http"):
            path = panel_object_path(user_id, comic_id, panel.panel_id, "wav")
            result = store.upload_audio_from_base64(panel.audio_base64, path)
            if result.url and not result.error:
                update["audio_base64"] = result.url
            else:
                logger.warning("audio_upload_failed panel_id=%s error=%s", panel.panel_id, result.error)

        uploaded.append(panel.model_copy(update=update) if update else panel)

    return uploaded
