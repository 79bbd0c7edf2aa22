import logging
from typing import Any

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import Field

from comicgen.core.exceptions import AgentBackendError
from comicgen.schemas.comic import CamelModel, Panel
from comicgen.services.agent_client import AgentClient
from comicgen.services.comic_chat import ComicChatSession
from comicgen.services.storage import BucketStore


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["gateway"])


def _client(request: Request) -> AgentClient:
    return request.app.state.agent_client


def _store(request: Request) -> BucketStore:
    return request.app.state.bucket_store


def _backend_error(status_code: int, body: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(AgentBackendError(status_code, body))})


def _connection_error(exc: Exception, fallback: str) -> JSONResponse:
    logger.warning("agent_backend_unreachable error=%s", exc)
    return JSONResponse(status_code=500, content={"error": str(exc) or fallback})


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


@router.post("/agent/sessions")
async def proxy_create_session(request: Request):
    body = await _json_body(request)
    body = body if isinstance(body, dict) else {}
    app_name = body.get("appName")
    user_id = body.get("userId")
    session_id = body.get("sessionId")
    if not app_name or not user_id or not session_id:
        return JSONResponse(
            status_code=400,
            content={"error": "Missing required fields: appName, userId, sessionId"},
        )

    try:
        resp = await _client(request).post_session(app_name, user_id, session_id, body.get("state") or {})
    except httpx.HTTPError as exc:
        return _connection_error(exc, "Failed to create session")

    if resp.status_code == 409:
        return {"exists": True, "sessionId": session_id}
    if resp.status_code >= 400:
        return _backend_error(resp.status_code, resp.text)
    return resp.json()


@router.post("/agent/run")
async def proxy_run(request: Request):
    body = await _json_body(request)
    try:
        resp = await _client(request).post_run(body)
    except httpx.HTTPError as exc:
        return _connection_error(exc, "Failed to connect to agent backend")

    if resp.status_code >= 400:
        return _backend_error(resp.status_code, resp.text)
    return resp.json()


@router.post("/agent/run_sse")
async def proxy_run_sse(request: Request):
    body = await _json_body(request)
    lines = _client(request).stream_run_lines(body)
    try:
        first = await anext(lines)
    except StopAsyncIteration:
        first = None
    except AgentBackendError as exc:
        return _backend_error(exc.status_code, exc.body)
    except httpx.HTTPError as exc:
        return _connection_error(exc, "Failed to connect to agent backend")

    async def relay():
        try:
            if first is not None:
                yield f"{first}\n"
            async for line in lines:
                yield f"{line}\n"
        finally:
            await lines.aclose()

    return StreamingResponse(relay(), media_type="text/event-stream")


class ChatRequest(CamelModel):
    message: str = Field(min_length=1)
    user_id: str | None = None
    session_id: str | None = None
    account_id: str | None = None


class ChatResponse(CamelModel):
    reply: str
    error: bool = False
    title: str = ""
    panels: list[Panel] = Field(default_factory=list)
    user_id: str
    session_id: str
    comic_id: str | None = None


@router.post("/comic/chat")
async def comic_chat(payload: ChatRequest, request: Request):
    chat = ComicChatSession(
        client=_client(request),
        store=_store(request),
        user_id=payload.user_id,
        session_id=payload.session_id,
        account_id=payload.account_id,
    )
    turn = await chat.send_message(payload.message)
    return ChatResponse(
        reply=turn.reply,
        error=turn.error,
        title=turn.title,
        panels=turn.panels,
        user_id=chat.user_id,
        session_id=chat.session_id,
        comic_id=turn.comic_id,
    ).to_wire()
