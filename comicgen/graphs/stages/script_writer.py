from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from comicgen.core.exceptions import ComicGenerationError
from comicgen.core.settings import settings
from comicgen.graphs.json_parser import json_from_gemini
from comicgen.prompts.loader import render_prompt
from comicgen.schemas.comic import ComicScript, Requirements, coerce_panel_id
from comicgen.services.vertex_gemini import GeminiClient

logger = logging.getLogger(__name__)

STAGE = "script_generator"

_SCRIPT_SCHEMA = json.dumps(
    {
        "title": "string",
        "lesson": "string",
        "panels": [
            {"panelId": 1, "scene": "string", "characters": "string", "dialogue": "string", "narration": "string"}
        ],
    }
)


def _prompt_script_writer(requirements: Requirements) -> str:
    return render_prompt(
        "prompt_script_writer",
        lesson=requirements.lesson,
        child_age=requirements.child_age,
        language_name=requirements.language_name,
        language_code=requirements.language,
        panel_count=requirements.panel_count,
    )


def _normalize_panels(raw_panels: list[Any], panel_count: int) -> list[dict]:
    """Order panels by their ids and renumber them 1..n."""
    panels = [dict(p) for p in raw_panels if isinstance(p, dict)]
    ids = [coerce_panel_id(p.get("panelId")) for p in panels]
    if all(i is not None for i in ids):
        panels = [p for _, p in sorted(zip(ids, panels), key=lambda pair: pair[0])]

    if len(panels) > panel_count:
        logger.warning("script_panels_truncated returned=%s requested=%s", len(panels), panel_count)
        panels = panels[:panel_count]

    renumbered = False
    for index, panel in enumerate(panels, start=1):
        if coerce_panel_id(panel.get("panelId")) != index:
            renumbered = True
        panel["panelId"] = index
        for key in ("scene", "dialogue", "narration", "characters"):
            if panel.get(key) is None:
                panel[key] = ""
    if renumbered:
        logger.info("script_panels_renumbered count=%s", len(panels))
    return panels


def compute_comic_script(requirements: Requirements, gemini: GeminiClient) -> ComicScript:
    payload = json_from_gemini(gemini, _prompt_script_writer(requirements), expected_schema=_SCRIPT_SCHEMA)
    if not isinstance(payload, dict):
        raise ComicGenerationError(STAGE, "model did not return a JSON object")

    raw_panels = payload.get("panels")
    if not isinstance(raw_panels, list) or not raw_panels:
        raise ComicGenerationError(STAGE, "script has no panels")

    panels = _normalize_panels(raw_panels, requirements.panel_count)
    if len(panels) < requirements.panel_count:
        raise ComicGenerationError(
            STAGE,
            f"expected {requirements.panel_count} panels, got {len(panels)}",
        )
    # Every panel needs spoken text for narration audio.
    silent = [p["panelId"] for p in panels if not (str(p["narration"]).strip() or str(p["dialogue"]).strip())]
    if silent:
        raise ComicGenerationError(STAGE, f"panels without narration or dialogue: {silent}")

    try:
        script = ComicScript.model_validate(
            {
                "title": payload.get("title") or "",
                "lesson": payload.get("lesson") or requirements.lesson,
                "panels": panels,
            }
        )
    except ValidationError as exc:
        raise ComicGenerationError(STAGE, f"invalid script: {exc.error_count()} validation error(s)") from exc

    logger.info(
        "node_complete node_name=ScriptGenerator panels=%s language=%s model=%s",
        len(script.panels),
        requirements.language,
        gemini.last_model or settings.gemini_text_model,
    )
    return script
