"""Runs one user turn against a session.

A turn appends the user's message, lets the requirements agent answer, and,
when the requirements are confirmed, transfers to the comic pipeline in the
same turn. Every event is persisted to the session before it is handed to
the caller, so state deltas are visible to later turns even when a stage
fails halfway.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator

from sqlalchemy.orm import Session

from comicgen.core.gemini_factory import build_gemini_client
from comicgen.core.metrics import record_comic_generated
from comicgen.core.request_context import log_context
from comicgen.core.settings import settings
from comicgen.db.models import AgentSession
from comicgen.graphs.pipeline import PIPELINE_AGENT, stream_comic_pipeline
from comicgen.graphs.requirements import (
    ROOT_AGENT,
    SLOT_REQUIREMENTS,
    SLOT_REQUIREMENTS_DRAFT,
    run_requirements_agent,
)
from comicgen.schemas.events import Event, EventActions
from comicgen.services.sessions import SessionService
from comicgen.services.speech import SpeechClient
from comicgen.services.tools import build_audio_tool, build_image_tool
from comicgen.services.vertex_gemini import GeminiClient

logger = logging.getLogger(__name__)


def _build_gemini_client() -> GeminiClient:
    return build_gemini_client()


def _build_speech_client() -> SpeechClient:
    return SpeechClient(
        api_url=settings.tts_api_url,
        api_key=settings.sarvam_api_key,
        model=settings.tts_model,
        timeout_seconds=settings.tts_timeout_seconds,
    )


def new_invocation_id() -> str:
    return f"e-{uuid.uuid4()}"


class AgentRunner:
    def __init__(self, db: Session):
        self.db = db
        self.sessions = SessionService(db)

    def run(self, app_name: str, user_id: str, session_id: str, message: str) -> Iterator[Event]:
        """Resolve the session now and return the lazy event stream for the turn.

        Raises:
            SessionNotFoundError: before any event is produced.
            ValueError: if the message is empty.
        """
        if not message.strip():
            raise ValueError("newMessage must contain text")
        session = self.sessions.get_session(app_name, user_id, session_id)
        return self._run_turn(session, message.strip())

    def _append(self, session: AgentSession, event: Event) -> Event:
        return self.sessions.append_event(session, event)

    def _run_turn(self, session: AgentSession, message: str) -> Iterator[Event]:
        # Consumers may advance this generator from different threads; context
        # variables are only scoped around blocks that do not yield.
        invocation_id = new_invocation_id()
        history = self.sessions.list_events(session)
        yield self._append(session, Event.text("user", message, invocation_id=invocation_id))

        gemini = _build_gemini_client()
        with log_context(stage=ROOT_AGENT, session_id=session.session_id):
            turn = run_requirements_agent(
                gemini,
                history=history,
                draft=dict((session.state or {}).get(SLOT_REQUIREMENTS_DRAFT) or {}),
                message=message,
            )

        delta = {SLOT_REQUIREMENTS_DRAFT: turn.draft}
        if turn.requirements is not None:
            delta[SLOT_REQUIREMENTS] = turn.requirements.to_wire()
        yield self._append(session, Event.text(ROOT_AGENT, turn.reply, invocation_id=invocation_id, **delta))

        if turn.requirements is None:
            return

        logger.info(
            "transfer_to_agent from=%s to=%s session_id=%s",
            ROOT_AGENT,
            PIPELINE_AGENT,
            session.session_id,
        )
        yield self._append(
            session,
            Event(
                author=ROOT_AGENT,
                invocation_id=invocation_id,
                actions=EventActions(transfer_to_agent=PIPELINE_AGENT),
            ),
        )

        image_tool = build_image_tool(
            gemini,
            output_dir=settings.output_dir,
            public_base_url=settings.public_base_url,
            url_prefix=settings.output_url_prefix,
        )
        audio_tool = build_audio_tool(_build_speech_client(), output_dir=settings.output_dir)

        for event in stream_comic_pipeline(
            turn.requirements,
            gemini,
            image_tool=image_tool,
            audio_tool=audio_tool,
            invocation_id=invocation_id,
        ):
            yield self._append(session, event)

        record_comic_generated(turn.requirements.language)
        logger.info(
            "comic_generated session_id=%s language=%s panels=%s",
            session.session_id,
            turn.requirements.language,
            turn.requirements.panel_count,
        )
