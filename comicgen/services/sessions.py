import logging
import time
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from comicgen.core.exceptions import SessionExistsError, SessionNotFoundError
from comicgen.db.models import AgentEvent, AgentSession
from comicgen.schemas.events import Event, SessionRead, generate_session_id

logger = logging.getLogger(__name__)


class SessionService:
    """Session and event persistence; a session's state is the merge of its events' state deltas."""

    def __init__(self, db: Session):
        self.db = db

    def create_session(
        self,
        app_name: str,
        user_id: str,
        session_id: str | None = None,
        state: dict[str, Any] | None = None,
    ) -> AgentSession:
        session_id = session_id or generate_session_id()
        if self._find(app_name, user_id, session_id) is not None:
            raise SessionExistsError(app_name, user_id, session_id)

        row = AgentSession(
            app_name=app_name,
            user_id=user_id,
            session_id=session_id,
            state=dict(state or {}),
            last_update_time=time.time(),
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise SessionExistsError(app_name, user_id, session_id) from exc
        self.db.refresh(row)
        logger.info("session_created app=%s user=%s session=%s", app_name, user_id, session_id)
        return row

    def get_session(self, app_name: str, user_id: str, session_id: str) -> AgentSession:
        row = self._find(app_name, user_id, session_id)
        if row is None:
            raise SessionNotFoundError(app_name, user_id, session_id)
        return row

    def list_sessions(self, app_name: str, user_id: str) -> list[AgentSession]:
        stmt = (
            select(AgentSession)
            .where(AgentSession.app_name == app_name, AgentSession.user_id == user_id)
            .order_by(AgentSession.last_update_time.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def delete_session(self, app_name: str, user_id: str, session_id: str) -> None:
        row = self.get_session(app_name, user_id, session_id)
        self.db.delete(row)
        self.db.commit()

    def append_event(self, session: AgentSession, event: Event) -> Event:
        next_sequence = self._next_sequence(session)
        self.db.add(
            AgentEvent(
                session_pk=session.pk,
                sequence=next_sequence,
                event_id=event.id,
                invocation_id=event.invocation_id,
                author=event.author,
                payload=event.to_wire(),
            )
        )
        delta = event.actions.state_delta
        if delta:
            # Reassign so the JSON column is flagged dirty.
            session.state = {**(session.state or {}), **delta}
        session.last_update_time = event.timestamp
        self.db.commit()
        return event

    def list_events(self, session: AgentSession) -> list[Event]:
        stmt = (
            select(AgentEvent)
            .where(AgentEvent.session_pk == session.pk)
            .order_by(AgentEvent.sequence.asc())
        )
        return [Event.model_validate(row.payload) for row in self.db.execute(stmt).scalars().all()]

    def to_read(self, session: AgentSession, include_events: bool = True) -> SessionRead:
        return SessionRead(
            id=session.session_id,
            app_name=session.app_name,
            user_id=session.user_id,
            state=dict(session.state or {}),
            events=self.list_events(session) if include_events else [],
            last_update_time=session.last_update_time,
        )

    def _find(self, app_name: str, user_id: str, session_id: str) -> AgentSession | None:
        stmt = select(AgentSession).where(
            AgentSession.app_name == app_name,
            AgentSession.user_id == user_id,
            AgentSession.session_id == session_id,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def _next_sequence(self, session: AgentSession) -> int:
        stmt = select(func.max(AgentEvent.sequence)).where(AgentEvent.session_pk == session.pk)
        current = self.db.execute(stmt).scalar_one_or_none()
        return int(current or 0) + 1
