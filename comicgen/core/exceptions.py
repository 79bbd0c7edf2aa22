"""
Application-level exception types.

HTTP handlers in ``comicgen.main`` map these onto status codes; tools and
storage helpers never raise them to callers and return tagged records instead.
"""

from __future__ import annotations


class AppError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        self.detail = detail or message
        super().__init__(message)


class ComicGenerationError(AppError):
    """Raised when a pipeline stage cannot produce its output; fails the whole turn."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage


class UnknownAppError(AppError):
    """Raised when a request names an app this backend does not serve."""

    def __init__(self, app_name: str) -> None:
        super().__init__(f"app not found: {app_name}", detail="app not found")
        self.app_name = app_name


class SessionNotFoundError(AppError):
    def __init__(self, app_name: str, user_id: str, session_id: str) -> None:
        super().__init__(
            f"session not found: {app_name}/{user_id}/{session_id}",
            detail="session not found",
        )
        self.session_id = session_id


class SessionExistsError(AppError):
    def __init__(self, app_name: str, user_id: str, session_id: str) -> None:
        super().__init__(
            f"session already exists: {app_name}/{user_id}/{session_id}",
            detail="session already exists",
        )
        self.session_id = session_id


class AgentBackendError(AppError):
    """Raised by the agent HTTP client when the backend answers with an error status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Agent backend error: {status_code} - {body}")
        self.status_code = status_code
        self.body = body
