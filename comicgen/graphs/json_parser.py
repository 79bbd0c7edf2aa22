"""Lenient JSON extraction from model output, with a single model-assisted repair."""

import json
import logging
import re
from collections.abc import Callable

from comicgen.core.metrics import increment_json_parse_failure
from comicgen.prompts.loader import render_prompt
from comicgen.services.vertex_gemini import GeminiClient, GeminiError

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL | re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_REPAIR_INPUT_LIMIT = 4000


def _strip_markdown_fences(text: str) -> str:
    match = _FENCE.search(text)
    return match.group(1).strip() if match else text


def _clean_json_text(text: str) -> str:
    """Drop fences, prose lines before the first bracket and after the last one, and trailing commas."""
    lines = _strip_markdown_fences(text.strip()).split("\n")
    starts = [i for i, line in enumerate(lines) if line.strip()[:1] in ("{", "[")]
    ends = [i for i, line in enumerate(lines) if line.strip()[-1:] in ("}", "]")]
    first = starts[0] if starts else 0
    last = ends[-1] if ends else len(lines) - 1
    body = "\n".join(lines[first : last + 1])
    return _TRAILING_COMMA.sub(r"\1", body).strip()


def _extract_balanced(text: str, opener: str, closer: str) -> str | None:
    """First balanced ``opener``...``closer`` span; brackets inside strings do not count."""
    start = text.find(opener)
    if start == -1:
        return None

    depth = 0
    in_string = escaped = False
    for pos in range(start, len(text)):
        char = text[pos]
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            in_string = not in_string
        elif not in_string and char == opener:
            depth += 1
        elif not in_string and char == closer:
            depth -= 1
            if depth == 0:
                return text[start : pos + 1]
    return None


def _extract_json_object(text: str) -> str | None:
    return _extract_balanced(text, "{", "}")


def _extract_json_array(text: str) -> str | None:
    return _extract_balanced(text, "[", "]")


_TIERS: tuple[tuple[str, Callable[[str], str | None]], ...] = (
    ("direct", lambda text: text),
    ("cleaned", _clean_json_text),
    ("object", _extract_json_object),
    ("array", _extract_json_array),
)


def parse_json_text(text: str, tier_prefix: str = "") -> dict | list | None:
    """
    Parse model output as JSON without calling the model again.

    Tiers run in order (raw, cleaned, first object, first array) and each
    failing tier is counted in the parse-failure metric.
    """
    if not text:
        return None

    for tier, candidate_of in _TIERS:
        candidate = candidate_of(text)
        if not candidate:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            increment_json_parse_failure(f"{tier_prefix}{tier}")
    return None


def _repair_json_with_llm(gemini: GeminiClient, malformed_text: str, expected_schema: str | None) -> dict | list | None:
    prompt = render_prompt(
        "prompt_repair_json",
        expected_schema=expected_schema or "any JSON value",
        malformed_json=malformed_text[:_REPAIR_INPUT_LIMIT],
    )
    try:
        repaired = gemini.generate_text(prompt=prompt, json_mode=True)
    except GeminiError as exc:
        logger.warning("json_repair_failed error=%s", exc)
        return None
    return parse_json_text(repaired, tier_prefix="repair_")


def json_from_gemini(
    gemini: GeminiClient,
    prompt: str,
    expected_schema: str | None = None,
    model: str | None = None,
) -> dict | list | None:
    """
    Generate JSON, repairing it once through the model when no tier parses.

    Errors from the first generation propagate. Output that is still not
    JSON after the repair yields ``None``.
    """
    text = gemini.generate_text(prompt=prompt, model=model, json_mode=True)
    result = parse_json_text(text)
    if result is not None:
        return result

    logger.info("json_repair_attempt preview=%r", (text or "")[:200])
    result = _repair_json_with_llm(gemini, text, expected_schema)
    if result is None:
        logger.warning("json_unparseable preview=%r", (text or "")[:300])
    return result
