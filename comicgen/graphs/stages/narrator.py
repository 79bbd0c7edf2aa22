from __future__ import annotations

import logging
from typing import Any

from comicgen.core.request_context import log_context
from comicgen.graphs.stages.tool_calls import Emit, call_tool
from comicgen.schemas.comic import DEFAULT_SPEAKER, ComicScript, Requirements
from comicgen.services.tools import FunctionTool

logger = logging.getLogger(__name__)

STAGE = "tts_generator"


def narration_text(dialogue: str, narration: str) -> str:
    return "\n".join(part.strip() for part in (dialogue, narration) if part and part.strip())


def audio_summary(results: list[dict[str, Any]]) -> str:
    ok = [r for r in results if r.get("success")]
    lines = [f"Audio narration ready for {len(ok)} of {len(results)} panels."]
    for result in results:
        status = result.get("filename") or ("no audio" if result.get("success") else "failed")
        lines.append(f"- Panel {result.get('panelId')}: {status}")
    return "\n".join(lines)


def generate_audio(
    script: ComicScript,
    requirements: Requirements,
    audio_tool: FunctionTool,
    invocation_id: str,
    emit: Emit,
) -> list[dict[str, Any]]:
    """Narrate every script panel (dialogue, then narration) in the requested language."""
    results: list[dict[str, Any]] = []
    for panel in script.panels:
        with log_context(panel_id=panel.panel_id):
            result = call_tool(
                audio_tool,
                {
                    "text": narration_text(panel.dialogue, panel.narration),
                    "language": requirements.language,
                    "panelId": panel.panel_id,
                    "speaker": DEFAULT_SPEAKER,
                },
                author=STAGE,
                invocation_id=invocation_id,
                emit=emit,
            )
        results.append(result)

    logger.info(
        "node_complete node_name=TTSGenerator clips=%s failed=%s",
        len(results),
        sum(1 for r in results if not r.get("success")),
    )
    return results
