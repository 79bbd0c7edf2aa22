"""Async HTTP client for the agent backend."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from comicgen.core.exceptions import AgentBackendError
from comicgen.schemas.events import generate_session_id, generate_user_id

logger = logging.getLogger(__name__)

__all__ = ["AgentClient", "generate_session_id", "generate_user_id", "parse_sse_line"]


def parse_sse_line(line: str) -> dict[str, Any] | None:
    """Decode one ``data: {...}`` line; anything else (or bad JSON) gives None."""
    if not line.startswith("data: "):
        return None
    try:
        data = json.loads(line[len("data: "):])
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _message_body(app_name: str, message: str, user_id: str, session_id: str, streaming: bool) -> dict[str, Any]:
    return {
        "appName": app_name,
        "userId": user_id,
        "sessionId": session_id,
        "newMessage": {"role": "user", "parts": [{"text": message}]},
        "streaming": streaming,
    }


class AgentClient:
    def __init__(
        self,
        base_url: str,
        app_name: str = "agent",
        timeout_seconds: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.app_name = app_name
        self.http = httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds, transport=transport)

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "AgentClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # Raw calls: the gateway proxy passes their status and body through.

    async def post_session(
        self,
        app_name: str,
        user_id: str,
        session_id: str,
        state: dict[str, Any] | None = None,
    ) -> httpx.Response:
        return await self.http.post(f"/apps/{app_name}/users/{user_id}/sessions/{session_id}", json=state or {})

    async def post_run(self, body: dict[str, Any]) -> httpx.Response:
        return await self.http.post("/run", json=body)

    async def stream_run_lines(self, body: dict[str, Any]) -> AsyncIterator[str]:
        """Yield the backend's SSE lines as they arrive.

        Raises:
            AgentBackendError: if the backend refuses the stream.
        """
        async with self.http.stream("POST", "/run_sse", json=body) as resp:
            if resp.status_code >= 400:
                text = (await resp.aread()).decode("utf-8", errors="replace")
                raise AgentBackendError(resp.status_code, text)
            async for line in resp.aiter_lines():
                yield line

    # Typed calls.

    async def create_session(
        self,
        user_id: str,
        session_id: str,
        state: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        resp = await self.post_session(self.app_name, user_id, session_id, state)
        if resp.status_code == 409:
            logger.info("session_exists session_id=%s", session_id)
            return {"exists": True, "sessionId": session_id}
        if resp.status_code >= 400:
            raise AgentBackendError(resp.status_code, resp.text)
        return resp.json()

    async def run(self, message: str, user_id: str, session_id: str) -> list[dict[str, Any]]:
        resp = await self.post_run(_message_body(self.app_name, message, user_id, session_id, streaming=False))
        if resp.status_code >= 400:
            raise AgentBackendError(resp.status_code, resp.text)
        data = resp.json()
        return data if isinstance(data, list) else []

    async def run_stream(self, message: str, user_id: str, session_id: str) -> AsyncIterator[dict[str, Any]]:
        body = _message_body(self.app_name, message, user_id, session_id, streaming=True)
        async for line in self.stream_run_lines(body):
            event = parse_sse_line(line)
            if event is not None:
                yield event
