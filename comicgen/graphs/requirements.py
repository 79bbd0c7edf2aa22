"""Conversational requirements agent.

Each user turn the agent sees the transcript so far, the draft collected in
earlier turns and the new message, and answers with JSON
``{reply, requirements, ready}``. A confirmed, valid draft becomes the
``requirements`` session slot and hands the turn to the comic pipeline.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from comicgen.core.exceptions import ComicGenerationError
from comicgen.core.settings import settings
from comicgen.graphs.json_parser import json_from_gemini
from comicgen.prompts.loader import render_prompt
from comicgen.schemas.comic import LANGUAGE_NAMES, Requirements
from comicgen.schemas.events import Event
from comicgen.services.vertex_gemini import GeminiClient

logger = logging.getLogger(__name__)

ROOT_AGENT = "comic_requirements_agent"
SLOT_REQUIREMENTS_DRAFT = "requirements_draft"
SLOT_REQUIREMENTS = "requirements"

_DRAFT_KEYS = ("lesson", "childAge", "language", "panelCount")
_DEFAULT_REPLY = "Could you tell me a bit more about the comic you would like?"
_FIELD_LABELS = {
    "lesson": "the lesson to teach",
    "childAge": "your child's age",
    "language": "the language",
    "panelCount": "the number of panels",
}
_AGENT_SCHEMA = json.dumps(
    {
        "reply": "string",
        "requirements": {"lesson": "string", "childAge": 6, "language": "en-IN", "panelCount": 4},
        "ready": False,
    }
)


@dataclass
class RequirementsTurn:
    reply: str
    draft: dict[str, Any]
    requirements: Requirements | None = None


def normalize_language(value: Any) -> Any:
    """Accept a language code in any case, or its English display name."""
    if not isinstance(value, str):
        return value
    text = value.strip()
    for code, name in LANGUAGE_NAMES.items():
        if text.lower() in (code.lower(), name.lower()):
            return code
    return text


def merge_draft(draft: Mapping[str, Any], update: Any) -> dict[str, Any]:
    merged = {k: v for k, v in draft.items() if k in _DRAFT_KEYS}
    if not isinstance(update, Mapping):
        return merged
    for key in _DRAFT_KEYS:
        value = update.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        merged[key] = normalize_language(value) if key == "language" else value
    return merged


def missing_fields(draft: Mapping[str, Any]) -> list[str]:
    """Draft keys that are absent or fail validation, in asking order."""
    try:
        Requirements.model_validate(draft)
    except ValidationError as exc:
        bad = {str(err["loc"][0]) for err in exc.errors() if err.get("loc")}
        return [key for key in _DRAFT_KEYS if key in bad]
    return []


def transcript_from_events(events: Iterable[Event]) -> str:
    lines = []
    for event in events:
        if event.author not in ("user", ROOT_AGENT):
            continue
        text = event.first_text()
        if not text:
            continue
        speaker = "Parent" if event.author == "user" else "Assistant"
        lines.append(f"{speaker}: {text}")
    return "\n".join(lines) or "(no messages yet)"


def _prompt_requirements_agent(transcript: str, draft: Mapping[str, Any], message: str) -> str:
    return render_prompt(
        "prompt_requirements_agent",
        transcript=transcript,
        draft_json=json.dumps(dict(draft), ensure_ascii=False),
        message=message,
        languages=list(LANGUAGE_NAMES.items()),
    )


def run_requirements_agent(
    gemini: GeminiClient,
    history: list[Event],
    draft: Mapping[str, Any],
    message: str,
) -> RequirementsTurn:
    payload = json_from_gemini(
        gemini,
        _prompt_requirements_agent(transcript_from_events(history), draft, message),
        expected_schema=_AGENT_SCHEMA,
        model=settings.gemini_agent_model,
    )
    if not isinstance(payload, dict):
        raise ComicGenerationError(ROOT_AGENT, "model did not return a JSON object")

    reply = payload.get("reply")
    reply = (reply.strip() if isinstance(reply, str) else "") or _DEFAULT_REPLY
    merged = merge_draft(draft, payload.get("requirements"))

    if payload.get("ready") is not True:
        return RequirementsTurn(reply=reply, draft=merged)

    missing = missing_fields(merged)
    if missing:
        logger.info("requirements_incomplete missing=%s", missing)
        ask = ", ".join(_FIELD_LABELS[key] for key in missing)
        reply = f"{reply}\n\nBefore I can start, I still need {ask}.".strip()
        return RequirementsTurn(reply=reply, draft=merged)

    requirements = Requirements.model_validate(merged)
    logger.info(
        "requirements_confirmed language=%s panel_count=%s child_age=%s",
        requirements.language,
        requirements.panel_count,
        requirements.child_age,
    )
    return RequirementsTurn(reply=reply, draft=merged, requirements=requirements)
