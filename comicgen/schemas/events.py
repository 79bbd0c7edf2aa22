"""Agent event protocol (ADK-compatible JSON shape)."""

from __future__ import annotations

import random
import string
import time
import uuid
from typing import Any

from pydantic import Field

from comicgen.schemas.comic import CamelModel


class FunctionCall(CamelModel):
    id: str = Field(default_factory=lambda: f"call-{uuid.uuid4()}")
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class FunctionResponse(CamelModel):
    id: str | None = None
    name: str
    response: dict[str, Any] = Field(default_factory=dict)


class Part(CamelModel):
    text: str | None = None
    function_call: FunctionCall | None = None
    function_response: FunctionResponse | None = None


class Content(CamelModel):
    role: str = "model"
    parts: list[Part] = Field(default_factory=list)


class EventActions(CamelModel):
    state_delta: dict[str, Any] = Field(default_factory=dict)
    transfer_to_agent: str | None = None


class Event(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    invocation_id: str = ""
    author: str
    timestamp: float = Field(default_factory=time.time)
    content: Content | None = None
    actions: EventActions = Field(default_factory=EventActions)

    @classmethod
    def text(cls, author: str, text: str, invocation_id: str = "", **state_delta: Any) -> "Event":
        return cls(
            author=author,
            invocation_id=invocation_id,
            content=Content(role="user" if author == "user" else "model", parts=[Part(text=text)]),
            actions=EventActions(state_delta=state_delta),
        )

    def first_text(self) -> str | None:
        if self.content is None:
            return None
        for part in self.content.parts:
            if part.text:
                return part.text
        return None


class NewMessage(CamelModel):
    role: str = "user"
    parts: list[Part] = Field(min_length=1)

    def joined_text(self) -> str:
        return "\n".join(p.text for p in self.parts if p.text).strip()


class RunAgentRequest(CamelModel):
    app_name: str
    user_id: str
    session_id: str
    new_message: NewMessage
    streaming: bool = False


class SessionRead(CamelModel):
    id: str
    app_name: str
    user_id: str
    state: dict[str, Any] = Field(default_factory=dict)
    events: list[Event] = Field(default_factory=list)
    last_update_time: float


def _base36(length: int) -> str:
    alphabet = string.digits + string.ascii_lowercase
    return "".join(random.choice(alphabet) for _ in range(length))


def generate_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{_base36(9)}"


def generate_user_id() -> str:
    return f"user_{_base36(9)}"


def generate_comic_id() -> str:
    return f"comic_{int(time.time() * 1000)}"
