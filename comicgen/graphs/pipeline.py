from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from typing import Any, TypedDict

from langgraph.config import get_stream_writer
from langgraph.graph import END, StateGraph

from comicgen.core.metrics import track_pipeline_stage
from comicgen.core.request_context import log_context
from comicgen.core.telemetry import trace_span
from comicgen.graphs.stages import image_generator, image_prompts, narrator, script_writer
from comicgen.schemas.comic import ComicScript, ImagePrompts, Requirements
from comicgen.schemas.events import Event
from comicgen.services.tools import FunctionTool
from comicgen.services.vertex_gemini import GeminiClient

logger = logging.getLogger(__name__)

PIPELINE_AGENT = "comic_pipeline"

# Session state slots written by the stages.
SLOT_COMIC_SCRIPT = "comic_script"
SLOT_IMAGE_PROMPTS = "image_prompts"
SLOT_GENERATED_IMAGES = "generated_images"
SLOT_GENERATED_AUDIO = "generated_audio"


class ComicContext(TypedDict, total=False):
    invocation_id: str
    requirements: Requirements
    gemini: GeminiClient
    image_tool: FunctionTool
    audio_tool: FunctionTool

    comic_script: ComicScript
    image_prompts: ImagePrompts
    generated_images: list[dict[str, Any]]
    generated_audio: list[dict[str, Any]]


def _emit(event: Event) -> None:
    get_stream_writer()(event)


def _stage(name: str):
    """Time, trace and label logs for one pipeline stage."""

    def decorator(fn):
        def wrapper(state: ComicContext) -> dict[str, Any]:
            with log_context(stage=name), trace_span(f"graph.{name}"), track_pipeline_stage(name):
                logger.info("node_started node_name=%s", name)
                return fn(state)

        wrapper.__name__ = fn.__name__
        return wrapper

    return decorator


@_stage(script_writer.STAGE)
def _node_script(state: ComicContext) -> dict[str, Any]:
    script = script_writer.compute_comic_script(state["requirements"], state["gemini"])
    wire = script.to_wire()
    _emit(
        Event.text(
            script_writer.STAGE,
            json.dumps(wire, ensure_ascii=False),
            invocation_id=state["invocation_id"],
            **{SLOT_COMIC_SCRIPT: wire},
        )
    )
    return {"comic_script": script}


@_stage(image_prompts.STAGE)
def _node_image_prompts(state: ComicContext) -> dict[str, Any]:
    prompts = image_prompts.compute_image_prompts(state["comic_script"], state["gemini"])
    wire = prompts.to_wire()
    _emit(
        Event.text(
            image_prompts.STAGE,
            json.dumps(wire, ensure_ascii=False),
            invocation_id=state["invocation_id"],
            **{SLOT_IMAGE_PROMPTS: wire},
        )
    )
    return {"image_prompts": prompts}


@_stage(image_generator.STAGE)
def _node_images(state: ComicContext) -> dict[str, Any]:
    results = image_generator.generate_images(
        state["image_prompts"],
        state["image_tool"],
        invocation_id=state["invocation_id"],
        emit=_emit,
    )
    _emit(
        Event.text(
            image_generator.STAGE,
            image_generator.IMAGES_READY_TEXT,
            invocation_id=state["invocation_id"],
            **{SLOT_GENERATED_IMAGES: results},
        )
    )
    return {"generated_images": results}


@_stage(narrator.STAGE)
def _node_audio(state: ComicContext) -> dict[str, Any]:
    results = narrator.generate_audio(
        state["comic_script"],
        state["requirements"],
        state["audio_tool"],
        invocation_id=state["invocation_id"],
        emit=_emit,
    )
    _emit(
        Event.text(
            narrator.STAGE,
            narrator.audio_summary(results),
            invocation_id=state["invocation_id"],
            **{SLOT_GENERATED_AUDIO: results},
        )
    )
    return {"generated_audio": results}


def build_comic_pipeline_graph():
    graph = StateGraph(ComicContext)

    graph.add_node(script_writer.STAGE, _node_script)
    graph.add_node(image_prompts.STAGE, _node_image_prompts)
    graph.add_node(image_generator.STAGE, _node_images)
    graph.add_node(narrator.STAGE, _node_audio)

    graph.set_entry_point(script_writer.STAGE)
    graph.add_edge(script_writer.STAGE, image_prompts.STAGE)
    graph.add_edge(image_prompts.STAGE, image_generator.STAGE)
    graph.add_edge(image_generator.STAGE, narrator.STAGE)
    graph.add_edge(narrator.STAGE, END)

    return graph.compile()


def stream_comic_pipeline(
    requirements: Requirements,
    gemini: GeminiClient,
    image_tool: FunctionTool,
    audio_tool: FunctionTool,
    invocation_id: str,
) -> Iterator[Event]:
    """Run the four stages in order, yielding each event as a stage emits it.

    A stage that raises stops the pipeline; the exception propagates to the
    consumer of this iterator.
    """
    app = build_comic_pipeline_graph()
    state: ComicContext = {
        "invocation_id": invocation_id,
        "requirements": requirements,
        "gemini": gemini,
        "image_tool": image_tool,
        "audio_tool": audio_tool,
    }
    for chunk in app.stream(state, stream_mode="custom"):
        if isinstance(chunk, Event):
            yield chunk
