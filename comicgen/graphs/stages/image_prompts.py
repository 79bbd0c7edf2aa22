from __future__ import annotations

import json
import logging

from comicgen.core.exceptions import ComicGenerationError
from comicgen.graphs.json_parser import json_from_gemini
from comicgen.prompts.loader import get_prompt_data, render_prompt
from comicgen.schemas.comic import ComicScript, ImagePrompts, PanelPrompt, coerce_panel_id
from comicgen.services.vertex_gemini import GeminiClient

logger = logging.getLogger(__name__)

STAGE = "image_prompt_generator"

_PROMPTS_SCHEMA = json.dumps({"artStyle": "string", "prompts": [{"panelId": 1, "prompt": "string"}]})


def _prompt_image_prompts(script: ComicScript, art_style: str) -> str:
    return render_prompt(
        "prompt_image_prompts",
        script_json=json.dumps(script.to_wire(), ensure_ascii=False, indent=2),
        art_style=art_style,
    )


def _fallback_prompt(scene: str, characters: str, art_style: str) -> str:
    cast = f" Characters: {characters}." if characters else ""
    return f"{scene.strip()}.{cast} Style: {art_style}"


def compute_image_prompts(script: ComicScript, gemini: GeminiClient) -> ImagePrompts:
    """One prompt per script panel, in script order.

    Prompts the model leaves out (or leaves empty) are filled from the
    panel's scene plus the shared art style.
    """
    default_style = str(get_prompt_data("art_style_default")).strip()
    payload = json_from_gemini(
        gemini,
        _prompt_image_prompts(script, default_style),
        expected_schema=_PROMPTS_SCHEMA,
    )
    if not isinstance(payload, dict):
        raise ComicGenerationError(STAGE, "model did not return a JSON object")

    art_style = payload.get("artStyle") if isinstance(payload.get("artStyle"), str) else ""
    art_style = art_style.strip() or default_style

    by_panel: dict[int, str] = {}
    for item in payload.get("prompts") or []:
        if not isinstance(item, dict):
            continue
        panel_id = coerce_panel_id(item.get("panelId"))
        prompt = item.get("prompt")
        if panel_id is not None and isinstance(prompt, str) and prompt.strip():
            by_panel.setdefault(panel_id, prompt.strip())

    prompts: list[PanelPrompt] = []
    filled = 0
    for panel in script.panels:
        prompt = by_panel.get(panel.panel_id)
        if prompt is None:
            filled += 1
            prompt = _fallback_prompt(panel.scene or script.title, panel.characters, art_style)
        prompts.append(PanelPrompt(panel_id=panel.panel_id, prompt=prompt))

    if filled:
        logger.warning("image_prompts_filled_from_scene count=%s", filled)
    logger.info("node_complete node_name=ImagePromptGenerator prompts=%s", len(prompts))
    return ImagePrompts(art_style=art_style, prompts=prompts)
