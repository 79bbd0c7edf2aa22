from __future__ import annotations

import logging
from typing import Any

from comicgen.core.request_context import log_context
from comicgen.graphs.stages.tool_calls import Emit, call_tool
from comicgen.schemas.comic import ImagePrompts
from comicgen.services.tools import FunctionTool

logger = logging.getLogger(__name__)

STAGE = "image_generator"
IMAGES_READY_TEXT = "Images ready!"


def generate_images(
    image_prompts: ImagePrompts,
    image_tool: FunctionTool,
    invocation_id: str,
    emit: Emit,
) -> list[dict[str, Any]]:
    """Generate panel images one at a time, in panel order.

    A failed panel is recorded as a failure result and the stage moves on.
    """
    results: list[dict[str, Any]] = []
    for item in sorted(image_prompts.prompts, key=lambda p: p.panel_id):
        with log_context(panel_id=item.panel_id):
            result = call_tool(
                image_tool,
                {"prompt": item.prompt, "panelId": item.panel_id},
                author=STAGE,
                invocation_id=invocation_id,
                emit=emit,
            )
        results.append(result)

    failed = [r.get("panelId") for r in results if not r.get("success")]
    if failed:
        logger.warning("image_generation_partial failed_panels=%s", failed)
    logger.info("node_complete node_name=ImageGenerator images=%s failed=%s", len(results), len(failed))
    return results
