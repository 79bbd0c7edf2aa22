"""Function tools the pipeline calls for panel media.

A tool never raises to its caller: validation errors and provider failures
come back as a failure record with ``success: false``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from comicgen.core.metrics import record_tool_call
from comicgen.core.request_context import log_context
from comicgen.schemas.comic import (
    DEFAULT_SPEAKER,
    AspectRatio,
    AudioToolResult,
    ImageToolResult,
    LanguageCode,
    Resolution,
    Speaker,
    ToolResult,
)
from comicgen.services.speech import SpeechClient
from comicgen.services.vertex_gemini import GeminiClient

logger = logging.getLogger(__name__)

IMAGE_TOOL_NAME = "generate_comic_image"
AUDIO_TOOL_NAME = "generate_panel_audio"


class ImageToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(min_length=1)
    panel_id: int = Field(ge=1, alias="panelId")
    aspect_ratio: AspectRatio = Field(default="4:3", alias="aspectRatio")
    resolution: Resolution = "2K"


class AudioToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(min_length=1)
    language: LanguageCode
    panel_id: int = Field(ge=1, alias="panelId")
    speaker: Speaker = DEFAULT_SPEAKER


def _panel_id_hint(args: dict[str, Any]) -> int:
    raw = args.get("panelId", args.get("panel_id"))
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class FunctionTool:
    name: str
    description: str
    args_model: type[BaseModel]
    func: Callable[[Any], ToolResult]
    result_model: type[ToolResult] = ToolResult
    noun: str = "media"

    def run(self, args: dict[str, Any]) -> dict[str, Any]:
        panel_id = _panel_id_hint(args)
        with log_context(panel_id=panel_id):
            try:
                parsed = self.args_model.model_validate(args)
                result = self.func(parsed)
            except ValidationError as exc:
                logger.warning("tool_invalid_args tool=%s errors=%s", self.name, exc.errors())
                result = self._failure(panel_id, f"Invalid arguments: {exc.error_count()} validation error(s)")
            except Exception as exc:  # noqa: BLE001
                logger.warning("tool_failed tool=%s error=%s", self.name, exc)
                result = self._failure(panel_id, str(exc) or exc.__class__.__name__)

        record_tool_call(self.name, result.success)
        return result.to_wire()

    def _failure(self, panel_id: int, error: str) -> ToolResult:
        return self.result_model(
            success=False,
            panel_id=panel_id,
            message=f"Failed to generate {self.noun} for panel {panel_id}",
            error=error,
        )


def build_image_tool(gemini: GeminiClient, output_dir: str, public_base_url: str, url_prefix: str = "/output") -> FunctionTool:
    images_dir = os.path.join(output_dir, "images")

    def generate_comic_image(args: ImageToolArgs) -> ImageToolResult:
        logger.info(
            "image_generation_started aspect_ratio=%s resolution=%s prompt_chars=%s",
            args.aspect_ratio,
            args.resolution,
            len(args.prompt),
        )
        image_bytes, mime_type = gemini.generate_image(
            prompt=args.prompt,
            aspect_ratio=args.aspect_ratio,
            image_size=args.resolution,
        )

        os.makedirs(images_dir, exist_ok=True)
        filename = f"panel_{args.panel_id}_{_timestamp_ms()}.png"
        file_path = os.path.join(images_dir, filename)
        with open(file_path, "wb") as f:
            f.write(image_bytes)

        image_url = f"{public_base_url.rstrip('/')}{url_prefix}/images/{filename}"
        logger.info("image_saved path=%s mime_type=%s bytes=%s", file_path, mime_type, len(image_bytes))
        return ImageToolResult(
            success=True,
            panel_id=args.panel_id,
            image_url=image_url,
            local_path=file_path,
            filename=filename,
            message=f"Successfully generated and saved image for panel {args.panel_id}",
        )

    return FunctionTool(
        name=IMAGE_TOOL_NAME,
        description=(
            "Generates a comic panel image from a detailed prompt and saves it under the output directory."
        ),
        args_model=ImageToolArgs,
        func=generate_comic_image,
        result_model=ImageToolResult,
        noun="image",
    )


def build_audio_tool(speech: SpeechClient, output_dir: str) -> FunctionTool:
    audio_dir = os.path.join(output_dir, "audio")

    def generate_panel_audio(args: AudioToolArgs) -> AudioToolResult:
        logger.info(
            "audio_generation_started language=%s speaker=%s text_chars=%s",
            args.language,
            args.speaker,
            len(args.text),
        )
        audio_base64 = speech.synthesize(args.text, args.language, args.speaker)

        file_path = None
        filename = None
        if audio_base64:
            try:
                audio_bytes = base64.b64decode(audio_base64, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValueError(f"TTS API returned undecodable audio: {exc}") from exc
            os.makedirs(audio_dir, exist_ok=True)
            filename = f"panel_{args.panel_id}_{_timestamp_ms()}.wav"
            file_path = os.path.join(audio_dir, filename)
            with open(file_path, "wb") as f:
                f.write(audio_bytes)
            logger.info("audio_saved path=%s bytes=%s", file_path, len(audio_bytes))

        return AudioToolResult(
            success=True,
            panel_id=args.panel_id,
            audio_base64=audio_base64,
            local_path=file_path,
            filename=filename,
            message=f"Successfully generated and saved audio for panel {args.panel_id}",
        )

    return FunctionTool(
        name=AUDIO_TOOL_NAME,
        description=(
            "Converts panel narration to speech in one of eleven Indian languages and saves the clip locally."
        ),
        args_model=AudioToolArgs,
        func=generate_panel_audio,
        result_model=AudioToolResult,
        noun="audio",
    )
