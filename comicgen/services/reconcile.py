"""Rebuild a comic from the events of an agent turn.

The pipeline reports its artifacts in more than one shape: state deltas
(``comic_script``, ``generated_images``, ``generated_audio``), tool
function responses, and JSON text parts. ``extract_panels`` accepts all of
them in a single pass and left-joins media onto the script's panels.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

from comicgen.schemas.comic import Comic, Panel, coerce_panel_id
from comicgen.schemas.events import Event
from comicgen.services.tools import AUDIO_TOOL_NAME, IMAGE_TOOL_NAME

logger = logging.getLogger(__name__)

PANEL_URL_PATTERN = re.compile(r"Panel\s*(\d+)[\s\S]*?(?:Image URL:|URL:)\s*(https?://\S+)", re.IGNORECASE)


def _as_dict(event: Event | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(event, Event):
        return event.to_wire()
    return event


def _str_or_empty(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _base_panels(raw_panels: list[Any]) -> list[Panel]:
    panels: list[Panel] = []
    for raw in raw_panels:
        if not isinstance(raw, Mapping):
            continue
        panel_id = coerce_panel_id(raw.get("panelId"))
        if panel_id is None:
            continue
        dialogue = _str_or_empty(raw.get("dialogue"))
        panels.append(
            Panel(
                panel_id=panel_id,
                narration=_str_or_empty(raw.get("narration")) or dialogue,
                image_prompt=_str_or_empty(raw.get("imagePrompt")) or _str_or_empty(raw.get("scene")),
                dialogue=dialogue,
                characters=_str_or_empty(raw.get("characters")),
                image_url=_str_or_empty(raw.get("imageUrl")) or None,
                audio_base64=_str_or_empty(raw.get("audioBase64")) or None,
            )
        )
    return panels


def _collect_media(items: Any, keys: tuple[str, ...], target: dict[int, str]) -> None:
    if not isinstance(items, list):
        return
    for item in items:
        if not isinstance(item, Mapping):
            continue
        panel_id = coerce_panel_id(item.get("panelId"))
        value = next((item.get(key) for key in keys if _str_or_empty(item.get(key))), None)
        if panel_id is not None and value:
            target[panel_id] = value


def scan_image_urls(text: str) -> dict[int, str]:
    """Parse ``Panel N ... Image URL: https://...`` markdown into an id → url map."""
    found: dict[int, str] = {}
    for match in PANEL_URL_PATTERN.finditer(text):
        panel_id = coerce_panel_id(match.group(1))
        url = match.group(2).strip()
        if panel_id is not None and url:
            found[panel_id] = url
    return found


def extract_panels(events: Iterable[Event | Mapping[str, Any]]) -> Comic:
    base_panels: list[Panel] = []
    image_map: dict[int, str] = {}
    audio_map: dict[int, str] = {}
    title = ""
    lesson = ""

    for event in events:
        event = _as_dict(event)
        actions = event.get("actions") or {}
        delta = actions.get("stateDelta") if isinstance(actions, Mapping) else None

        if isinstance(delta, Mapping):
            script = delta.get("comic_script")
            if isinstance(script, Mapping):
                if _str_or_empty(script.get("title")):
                    title = script["title"]
                if _str_or_empty(script.get("lesson")):
                    lesson = script["lesson"]
                raw_panels = script.get("panels")
                if isinstance(raw_panels, list) and raw_panels:
                    base_panels = _base_panels(raw_panels)

            images = delta.get("generated_images")
            if isinstance(images, list):
                _collect_media(images, ("imageUrl", "url"), image_map)
            elif isinstance(images, str):
                image_map.update(scan_image_urls(images))

            _collect_media(delta.get("generated_audio"), ("audioBase64", "audio"), audio_map)

        content = event.get("content") or {}
        parts = content.get("parts") if isinstance(content, Mapping) else None
        for part in parts or []:
            if not isinstance(part, Mapping):
                continue

            fn_response = part.get("functionResponse")
            if isinstance(fn_response, Mapping):
                response = fn_response.get("response")
                if isinstance(response, Mapping) and response.get("success") is True:
                    name = fn_response.get("name")
                    if name == IMAGE_TOOL_NAME:
                        _collect_media([response], ("imageUrl",), image_map)
                    elif name == AUDIO_TOOL_NAME:
                        _collect_media([response], ("audioBase64",), audio_map)

            text = part.get("text")
            if isinstance(text, str) and text.strip():
                try:
                    parsed = json.loads(text)
                except ValueError:
                    continue
                if not isinstance(parsed, Mapping):
                    continue
                raw_panels = parsed.get("panels")
                if isinstance(raw_panels, list):
                    if _str_or_empty(parsed.get("title")):
                        title = parsed["title"]
                    base_panels = _base_panels(raw_panels)
                _collect_media(parsed.get("images"), ("imageUrl", "url"), image_map)

    logger.debug(
        "reconcile_summary panels=%s images=%s audio=%s",
        len(base_panels),
        len(image_map),
        len(audio_map),
    )

    merged = [
        panel.model_copy(
            update={
                "image_url": image_map.get(panel.panel_id) or panel.image_url,
                "audio_base64": audio_map.get(panel.panel_id) or panel.audio_base64,
            }
        )
        for panel in base_panels
    ]
    return Comic(title=title, lesson=lesson, panels=merged)


def final_response(events: Iterable[Event | Mapping[str, Any]]) -> str:
    """The last text part of the turn, scanning backwards; "" when there is none."""
    for event in reversed(list(events)):
        content = _as_dict(event).get("content") or {}
        parts = content.get("parts") if isinstance(content, Mapping) else None
        for part in parts or []:
            if isinstance(part, Mapping) and _str_or_empty(part.get("text")):
                return part["text"]
    return ""
