"""Builds the GeminiClient shared by the requirements agent and the pipeline stages."""

from __future__ import annotations

from comicgen.core.settings import Settings, settings as default_settings
from comicgen.services.vertex_gemini import GeminiClient


class GeminiNotConfiguredError(RuntimeError):
    def __init__(self) -> None:
        super().__init__("Gemini is not configured. Set GEMINI_API_KEY or GOOGLE_CLOUD_PROJECT.")


def build_gemini_client(config: Settings | None = None) -> GeminiClient:
    """Vertex AI when a project is set, otherwise the Gemini API key.

    Raises:
        GeminiNotConfiguredError: neither credential is present.
    """
    cfg = config or default_settings
    if not (cfg.google_cloud_project or cfg.gemini_api_key):
        raise GeminiNotConfiguredError()

    return GeminiClient(
        project=cfg.google_cloud_project,
        location=cfg.google_cloud_location,
        api_key=cfg.gemini_api_key,
        text_model=cfg.gemini_text_model,
        image_model=cfg.gemini_image_model,
        fallback_text_model=cfg.gemini_fallback_text_model,
        timeout_seconds=cfg.gemini_timeout_seconds,
        max_retries=cfg.gemini_max_retries,
        initial_backoff_seconds=cfg.gemini_initial_backoff_seconds,
        circuit_breaker_threshold=cfg.gemini_circuit_breaker_threshold,
        circuit_breaker_timeout=cfg.gemini_circuit_breaker_timeout,
    )
