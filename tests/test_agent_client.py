import json

import httpx
import pytest

from comicgen.core.exceptions import AgentBackendError
from comicgen.services.agent_client import AgentClient, parse_sse_line


def _client(handler):
    return AgentClient(base_url="http://backend", app_name="agent", transport=httpx.MockTransport(handler))


def test_parse_sse_line():
    assert parse_sse_line('data: {"author": "user"}') == {"author": "user"}
    assert parse_sse_line("data: not json") is None
    assert parse_sse_line("data: [1, 2]") is None
    assert parse_sse_line("") is None
    assert parse_sse_line(": keep-alive") is None


@pytest.mark.anyio
async def test_create_session_posts_to_session_path():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "s1", "appName": "agent", "userId": "u1", "state": {}})

    async with _client(handler) as client:
        data = await client.create_session("u1", "s1")

    assert seen == {"path": "/apps/agent/users/u1/sessions/s1", "body": {}}
    assert data["id"] == "s1"


@pytest.mark.anyio
async def test_create_session_conflict_means_exists():
    async with _client(lambda request: httpx.Response(409, json={"detail": "session already exists"})) as client:
        assert await client.create_session("u1", "s1") == {"exists": True, "sessionId": "s1"}


@pytest.mark.anyio
async def test_run_sends_message_body_and_raises_on_error():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        if len(bodies) == 1:
            return httpx.Response(200, json=[{"author": "user"}])
        return httpx.Response(500, text="boom")

    async with _client(handler) as client:
        events = await client.run("make a comic", "u1", "s1")
        with pytest.raises(AgentBackendError) as exc_info:
            await client.run("again", "u1", "s1")

    assert events == [{"author": "user"}]
    assert bodies[0] == {
        "appName": "agent",
        "userId": "u1",
        "sessionId": "s1",
        "newMessage": {"role": "user", "parts": [{"text": "make a comic"}]},
        "streaming": False,
    }
    assert exc_info.value.status_code == 500
    assert str(exc_info.value) == "Agent backend error: 500 - boom"


@pytest.mark.anyio
async def test_run_stream_skips_bad_lines():
    stream_body = (
        'data: {"author": "user"}\n\n'
        "data: {broken\n\n"
        ": comment\n\n"
        'data: {"author": "comic_requirements_agent"}\n\n'
    )

    def handler(request):
        assert json.loads(request.content)["streaming"] is True
        return httpx.Response(200, text=stream_body, headers={"content-type": "text/event-stream"})

    async with _client(handler) as client:
        events = [event async for event in client.run_stream("hi", "u1", "s1")]

    assert [e["author"] for e in events] == ["user", "comic_requirements_agent"]


@pytest.mark.anyio
async def test_stream_refused_raises_backend_error():
    async with _client(lambda request: httpx.Response(404, json={"detail": "session not found"})) as client:
        with pytest.raises(AgentBackendError) as exc_info:
            async for _ in client.run_stream("hi", "u1", "s1"):
                pass

    assert exc_info.value.status_code == 404
