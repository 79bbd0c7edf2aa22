import contextvars
from contextlib import contextmanager

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)
stage_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("stage", default=None)
session_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("session_id", default=None)
panel_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("panel_id", default=None)


def set_request_id(request_id: str) -> contextvars.Token:
    """Store the current request ID in a context variable."""
    return request_id_var.set(request_id)


def reset_request_id(token: contextvars.Token) -> None:
    request_id_var.reset(token)


def get_request_id() -> str | None:
    return request_id_var.get()


def get_stage() -> str | None:
    """Pipeline stage or agent currently producing events."""
    return stage_var.get()


def get_session_id() -> str | None:
    return session_id_var.get()


def get_panel_id() -> str | None:
    return panel_id_var.get()


@contextmanager
def log_context(
    stage: str | None = None,
    session_id: str | None = None,
    panel_id: int | str | None = None,
):
    """Temporarily scope stage/session/panel context for structured logs."""
    tokens: list[tuple[contextvars.ContextVar[str | None], contextvars.Token]] = []
    if stage is not None:
        tokens.append((stage_var, stage_var.set(stage)))
    if session_id is not None:
        tokens.append((session_id_var, session_id_var.set(str(session_id))))
    if panel_id is not None:
        tokens.append((panel_id_var, panel_id_var.set(str(panel_id))))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
