"""Tests for the centralized Gemini client factory."""

import pytest
from unittest.mock import patch

from comicgen.core import settings as settings_module
from comicgen.core.gemini_factory import (
    GeminiNotConfiguredError,
    build_gemini_client,
)


def test_not_configured_error_is_runtime_error():
    err = GeminiNotConfiguredError()
    assert isinstance(err, RuntimeError)
    assert "GEMINI_API_KEY" in str(err)
    assert "GOOGLE_CLOUD_PROJECT" in str(err)


def test_raises_when_no_credentials(monkeypatch):
    monkeypatch.setattr(settings_module.settings, "google_cloud_project", None)
    monkeypatch.setattr(settings_module.settings, "gemini_api_key", None)

    with pytest.raises(GeminiNotConfiguredError):
        build_gemini_client()


def test_builds_client_from_settings(monkeypatch):
    monkeypatch.setattr(settings_module.settings, "google_cloud_project", None)
    monkeypatch.setattr(settings_module.settings, "gemini_api_key", "test-key")
    monkeypatch.setattr(settings_module.settings, "gemini_text_model", "gemini-2.5-flash")
    monkeypatch.setattr(settings_module.settings, "gemini_fallback_text_model", "gemini-2.0-flash")
    monkeypatch.setattr(settings_module.settings, "gemini_max_retries", 1)

    with patch("comicgen.services.vertex_gemini.genai") as genai:
        client = build_gemini_client()

    genai.Client.assert_called_once()
    assert genai.Client.call_args.kwargs["api_key"] == "test-key"
    assert client._text_model == "gemini-2.5-flash"
    assert client._fallback_text_model == "gemini-2.0-flash"
    assert client.max_attempts == 1


def test_prefers_vertex_when_project_is_set(monkeypatch):
    monkeypatch.setattr(settings_module.settings, "google_cloud_project", "test-project")
    monkeypatch.setattr(settings_module.settings, "google_cloud_location", "us-central1")
    monkeypatch.setattr(settings_module.settings, "gemini_api_key", None)

    with patch("comicgen.services.vertex_gemini.genai") as genai:
        build_gemini_client()

    kwargs = genai.Client.call_args.kwargs
    assert kwargs["vertexai"] is True
    assert kwargs["project"] == "test-project"
