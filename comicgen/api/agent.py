import json
import logging
from collections.abc import Iterator
from typing import Any

from fastapi import APIRouter, Body, Response
from fastapi.responses import StreamingResponse

from comicgen.api.deps import DbSessionDep, KnownAppDep, require_known_app
from comicgen.core.settings import settings
from comicgen.db.session import get_sessionmaker
from comicgen.schemas.events import RunAgentRequest
from comicgen.services.runner import AgentRunner
from comicgen.services.sessions import SessionService


logger = logging.getLogger(__name__)

router = APIRouter(tags=["agent"])


@router.get("/list-apps")
def list_apps() -> list[str]:
    return [settings.app_name]


@router.post("/apps/{app_name}/users/{user_id}/sessions/{session_id}")
def create_session_with_id(
    user_id: str,
    session_id: str,
    state: dict[str, Any] | None = Body(default=None),
    app_name: str = KnownAppDep,
    db=DbSessionDep,
):
    svc = SessionService(db)
    session = svc.create_session(app_name, user_id, session_id=session_id, state=state)
    return svc.to_read(session).to_wire()


@router.post("/apps/{app_name}/users/{user_id}/sessions")
def create_session(
    user_id: str,
    state: dict[str, Any] | None = Body(default=None),
    app_name: str = KnownAppDep,
    db=DbSessionDep,
):
    svc = SessionService(db)
    session = svc.create_session(app_name, user_id, state=state)
    return svc.to_read(session).to_wire()


@router.get("/apps/{app_name}/users/{user_id}/sessions")
def list_sessions(user_id: str, app_name: str = KnownAppDep, db=DbSessionDep):
    svc = SessionService(db)
    return [svc.to_read(s, include_events=False).to_wire() for s in svc.list_sessions(app_name, user_id)]


@router.get("/apps/{app_name}/users/{user_id}/sessions/{session_id}")
def get_session(user_id: str, session_id: str, app_name: str = KnownAppDep, db=DbSessionDep):
    svc = SessionService(db)
    return svc.to_read(svc.get_session(app_name, user_id, session_id)).to_wire()


@router.delete("/apps/{app_name}/users/{user_id}/sessions/{session_id}", status_code=204)
def delete_session(user_id: str, session_id: str, app_name: str = KnownAppDep, db=DbSessionDep):
    SessionService(db).delete_session(app_name, user_id, session_id)
    return Response(status_code=204)


@router.post("/run")
def run_agent(payload: RunAgentRequest, db=DbSessionDep) -> list[dict]:
    require_known_app(payload.app_name)
    events = AgentRunner(db).run(
        payload.app_name,
        payload.user_id,
        payload.session_id,
        payload.new_message.joined_text(),
    )
    return [event.to_wire() for event in events]


def _sse(data: dict) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


@router.post("/run_sse")
def run_agent_sse(payload: RunAgentRequest):
    require_known_app(payload.app_name)
    db = get_sessionmaker()()
    try:
        events = AgentRunner(db).run(
            payload.app_name,
            payload.user_id,
            payload.session_id,
            payload.new_message.joined_text(),
        )
    except Exception:
        db.close()
        raise

    def stream() -> Iterator[str]:
        try:
            for event in events:
                yield _sse(event.to_wire())
        except Exception as exc:  # noqa: BLE001
            logger.exception("run_sse_failed session_id=%s", payload.session_id)
            yield _sse({"error": str(exc)})
        finally:
            db.close()

    return StreamingResponse(stream(), media_type="text/event-stream")
