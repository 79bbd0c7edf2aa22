from __future__ import annotations

from collections.abc import Callable
from typing import Any

from comicgen.schemas.events import Content, Event, FunctionCall, FunctionResponse, Part
from comicgen.services.tools import FunctionTool

Emit = Callable[[Event], None]


def call_tool(
    tool: FunctionTool,
    args: dict[str, Any],
    author: str,
    invocation_id: str,
    emit: Emit,
) -> dict[str, Any]:
    """Run ``tool`` and emit its functionCall / functionResponse event pair."""
    call = FunctionCall(name=tool.name, args=args)
    emit(
        Event(
            author=author,
            invocation_id=invocation_id,
            content=Content(role="model", parts=[Part(function_call=call)]),
        )
    )

    result = tool.run(args)

    emit(
        Event(
            author=author,
            invocation_id=invocation_id,
            content=Content(
                role="user",
                parts=[Part(function_response=FunctionResponse(id=call.id, name=tool.name, response=result))],
            ),
        )
    )
    return result
