"""Comic artifact models shared by the pipeline, the tools and the client-side reconciliation."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


LanguageCode = Literal[
    "en-IN",
    "hi-IN",
    "bn-IN",
    "ta-IN",
    "te-IN",
    "kn-IN",
    "ml-IN",
    "mr-IN",
    "gu-IN",
    "pa-IN",
    "od-IN",
]

LANGUAGE_NAMES: dict[str, str] = {
    "en-IN": "English",
    "hi-IN": "Hindi",
    "bn-IN": "Bengali",
    "ta-IN": "Tamil",
    "te-IN": "Telugu",
    "kn-IN": "Kannada",
    "ml-IN": "Malayalam",
    "mr-IN": "Marathi",
    "gu-IN": "Gujarati",
    "pa-IN": "Punjabi",
    "od-IN": "Odia",
}

DEFAULT_LANGUAGE: LanguageCode = "en-IN"

Speaker = Literal["anushka", "manisha", "vidya", "arya", "abhilash", "karun", "hitesh"]

DEFAULT_SPEAKER: Speaker = "anushka"

AspectRatio = Literal["1:1", "4:3", "3:4", "16:9", "9:16"]
Resolution = Literal["1K", "2K"]

THEME = "avengers"


class CamelModel(BaseModel):
    """Wire model: camelCase JSON, snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class Requirements(CamelModel):
    lesson: str = Field(min_length=1)
    child_age: int = Field(ge=1)
    language: LanguageCode = DEFAULT_LANGUAGE
    # 4-6 is suggested in conversation, not enforced.
    panel_count: int = Field(ge=1)
    theme: Literal["avengers"] = THEME

    @field_validator("lesson")
    @classmethod
    def _strip_lesson(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("lesson must not be blank")
        return value

    @property
    def language_name(self) -> str:
        return LANGUAGE_NAMES[self.language]


class ScriptPanel(CamelModel):
    panel_id: int = Field(ge=1)
    scene: str
    characters: str = ""
    dialogue: str
    narration: str


class ComicScript(CamelModel):
    title: str = Field(min_length=1)
    lesson: str
    panels: list[ScriptPanel] = Field(min_length=1)


class PanelPrompt(CamelModel):
    panel_id: int = Field(ge=1)
    prompt: str = Field(min_length=1)


class ImagePrompts(CamelModel):
    art_style: str
    prompts: list[PanelPrompt]


class ToolResult(CamelModel):
    success: bool
    panel_id: int
    local_path: str | None = None
    filename: str | None = None
    message: str
    error: str | None = None

    def to_wire(self) -> dict:
        # Media fields stay present (as null) on failure so consumers can test them directly.
        payload = self.model_dump(by_alias=True)
        if payload.get("filename") is None:
            payload.pop("filename", None)
        if payload.get("error") is None:
            payload.pop("error", None)
        return payload


class ImageToolResult(ToolResult):
    image_url: str | None = None


class AudioToolResult(ToolResult):
    audio_base64: str | None = None


class Panel(CamelModel):
    """One reconciled panel as rendered by a client."""

    panel_id: int
    narration: str = ""
    image_prompt: str = ""
    dialogue: str = ""
    characters: str = ""
    image_url: str | None = None
    audio_base64: str | None = None


class Comic(CamelModel):
    title: str = ""
    lesson: str = ""
    panels: list[Panel] = Field(default_factory=list)


def coerce_panel_id(value: Any) -> int | None:
    """Positive int ids only; numeric strings and integral floats are accepted."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if value.isdigit():
            value = int(value)
        else:
            try:
                value = float(value)
            except ValueError:
                return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if isinstance(value, int) and value > 0:
        return value
    return None
