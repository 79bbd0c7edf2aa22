"""Tests for application-level exception types."""

import pytest

from comicgen.core.exceptions import (
    AgentBackendError,
    AppError,
    ComicGenerationError,
    SessionExistsError,
    SessionNotFoundError,
    UnknownAppError,
)


class TestAppError:
    def test_message_and_detail(self):
        err = AppError("something broke", detail="user-friendly msg")
        assert str(err) == "something broke"
        assert err.detail == "user-friendly msg"

    def test_detail_defaults_to_message(self):
        assert AppError("fallback message").detail == "fallback message"


@pytest.mark.parametrize(
    "exc_class",
    [ComicGenerationError, UnknownAppError, SessionNotFoundError, SessionExistsError, AgentBackendError],
)
def test_inherits_app_error(exc_class):
    assert issubclass(exc_class, AppError)


def test_generation_error_names_stage():
    err = ComicGenerationError("script_generator", "script has no panels")
    assert str(err) == "script_generator failed: script has no panels"
    assert err.stage == "script_generator"


def test_session_errors_have_short_detail():
    assert SessionNotFoundError("agent", "u1", "s1").detail == "session not found"
    err = SessionExistsError("agent", "u1", "s1")
    assert err.detail == "session already exists"
    assert "agent/u1/s1" in str(err)


def test_backend_error_keeps_status_and_body():
    err = AgentBackendError(502, "bad gateway")
    assert str(err) == "Agent backend error: 502 - bad gateway"
    assert (err.status_code, err.body) == (502, "bad gateway")
