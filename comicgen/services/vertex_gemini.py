"""
Gemini client for the comic agents and pipeline stages.

Wraps ``google.genai`` with child-safe generation settings, error
classification, optional retries, a per-operation circuit breaker and a
fallback text model. Every stage fails loudly: callers get a typed
``GeminiError`` rather than an empty result.
"""

import time
import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from comicgen.core.metrics import track_gemini_call
from google import genai
from google.genai import types

logger = logging.getLogger(__name__)

TEXT_OPERATION = "generate_text"
IMAGE_OPERATION = "generate_image"


class GeminiError(Exception):
    """Base exception for Gemini failures; carries the request id and model when known."""

    def __init__(self, message: str, request_id: str | None = None, model: str | None = None):
        super().__init__(message)
        self.request_id = request_id
        self.model = model


class GeminiRateLimitError(GeminiError):
    pass


class GeminiContentFilterError(GeminiError):
    """The prompt or the generated content was blocked by the safety settings."""

    def __init__(
        self,
        message: str,
        request_id: str | None = None,
        model: str | None = None,
        blocked_categories: list[str] | None = None,
    ):
        super().__init__(message, request_id, model)
        self.blocked_categories = blocked_categories or []


class GeminiTimeoutError(GeminiError):
    pass


class GeminiModelUnavailableError(GeminiError):
    pass


class GeminiCircuitOpenError(GeminiError):
    def __init__(self, message: str, retry_after: datetime | None = None):
        super().__init__(message)
        self.retry_after = retry_after


# (error type, retryable, lowercase markers) checked in order against the error text.
_ERROR_RULES: tuple[tuple[str, bool, tuple[str, ...]], ...] = (
    ("rate_limit", True, ("resource_exhausted", "429")),
    ("content_filter", False, ("safety", "blocked")),
    ("timeout", True, ("timeout", "deadline")),
    ("model_unavailable", True, ("unavailable", "503")),
    ("invalid_request", False, ("invalid", "400")),
)


def classify_error(error_text: str) -> tuple[str, bool]:
    """Map an SDK error message to ``(error_type, is_retryable)``."""
    text = error_text.lower()
    for error_type, retryable, markers in _ERROR_RULES:
        if any(marker in text for marker in markers):
            return error_type, retryable
    return "unknown", True


def _error_for(error_type: str, attempts: int, last_exc: Exception | None, request_id: str, model: str) -> GeminiError:
    if error_type == "rate_limit":
        return GeminiRateLimitError(f"Rate limit exceeded after {attempts} attempt(s)", request_id, model)
    if error_type == "timeout":
        return GeminiTimeoutError(f"Request timed out after {attempts} attempt(s)", request_id, model)
    if error_type == "model_unavailable":
        return GeminiModelUnavailableError(f"Model {model} is unavailable", request_id, model)
    return GeminiError(f"Gemini call failed after {attempts} attempt(s): {last_exc!r}", request_id, model)


@dataclass
class CircuitBreakerState:
    """
    Closed → open after ``failure_threshold`` consecutive failures; open →
    half-open once ``recovery_timeout_seconds`` pass; half-open → closed
    after ``half_open_success_threshold`` successes.
    """

    failure_threshold: int = 5
    recovery_timeout_seconds: int = 60
    half_open_success_threshold: int = 2

    failure_count: int = 0
    consecutive_successes: int = 0
    circuit_open_until: datetime | None = None

    @property
    def state(self) -> str:
        if self.circuit_open_until is None:
            return "closed"
        if datetime.now(timezone.utc) < self.circuit_open_until:
            return "open"
        return "half_open" if self.failure_count > 0 else "closed"

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    @property
    def is_half_open(self) -> bool:
        return self.state == "half_open"

    def check_circuit(self) -> None:
        if self.is_open:
            until = self.circuit_open_until.isoformat() if self.circuit_open_until else "unknown"
            raise GeminiCircuitOpenError(
                f"Circuit breaker is open after {self.failure_count} consecutive failures; retry after {until}",
                retry_after=self.circuit_open_until,
            )

    def record_failure(self) -> None:
        self.failure_count += 1
        self.consecutive_successes = 0
        if self.failure_count >= self.failure_threshold:
            self.circuit_open_until = datetime.now(timezone.utc) + timedelta(seconds=self.recovery_timeout_seconds)
            logger.warning(
                "circuit_opened failures=%d retry_after=%s",
                self.failure_count,
                self.circuit_open_until.isoformat(),
            )

    def record_success(self) -> None:
        self.consecutive_successes += 1
        state = self.state
        if state == "half_open" and self.consecutive_successes >= self.half_open_success_threshold:
            logger.info("circuit_closed successes=%d", self.consecutive_successes)
            self.reset()
        elif state == "closed":
            self.failure_count = 0

    def reset(self) -> None:
        self.failure_count = 0
        self.consecutive_successes = 0
        self.circuit_open_until = None

    def status(self) -> dict:
        return {
            "state": self.state,
            "failure_count": self.failure_count,
            "is_open": self.is_open,
            "is_half_open": self.is_half_open,
            "circuit_open_until": self.circuit_open_until.isoformat() if self.circuit_open_until else None,
            "consecutive_successes": self.consecutive_successes,
        }


@dataclass
class RetryPolicy:
    max_attempts: int = 1
    initial_backoff_seconds: float = 0.8
    rate_limit_backoff_seconds: list[float] = field(default_factory=lambda: [5.0, 10.0, 30.0])

    def backoff(self, attempt: int, error_type: str) -> float:
        if error_type == "rate_limit":
            return self.rate_limit_backoff_seconds[min(attempt, len(self.rate_limit_backoff_seconds) - 1)]
        return self.initial_backoff_seconds * (2**attempt)


# Children's content: block anything above low probability.
_CHILD_SAFE_SETTINGS = [
    types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.BLOCK_LOW_AND_ABOVE)
    for category in (
        types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    )
]


def _first_candidate(response: types.GenerateContentResponse):
    return (response.candidates or [None])[0]


def _raise_if_blocked(response: types.GenerateContentResponse, request_id: str, model: str) -> None:
    candidate = _first_candidate(response)
    if candidate is None:
        feedback = getattr(response, "prompt_feedback", None)
        reason = getattr(feedback, "block_reason", None) if feedback else None
        if reason:
            raise GeminiContentFilterError(f"Prompt blocked by safety filters: {reason}", request_id, model)
        return

    finish_reason = getattr(candidate, "finish_reason", None)
    if finish_reason and "SAFETY" in str(finish_reason).upper():
        categories = [
            str(getattr(rating, "category", "UNKNOWN"))
            for rating in getattr(candidate, "safety_ratings", None) or []
            if getattr(rating, "blocked", False)
        ]
        raise GeminiContentFilterError(
            f"Content blocked by safety filters: {categories}",
            request_id,
            model,
            blocked_categories=categories,
        )


def _content_parts(response: types.GenerateContentResponse, model: str | None) -> list:
    candidate = _first_candidate(response)
    if candidate is None or not candidate.content or not candidate.content.parts:
        raise GeminiError("Gemini returned empty content", model=model)
    return list(candidate.content.parts)


class GeminiClient:
    def __init__(
        self,
        project: str | None,
        location: str | None,
        api_key: str | None,
        text_model: str,
        image_model: str,
        timeout_seconds: float = 60.0,
        max_retries: int = 1,
        initial_backoff_seconds: float = 0.8,
        rate_limit_backoff_seconds: list[float] | None = None,
        fallback_text_model: str | None = None,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 60,
    ):
        if not api_key and (not project or not location):
            raise RuntimeError(
                "Either GEMINI_API_KEY or both GOOGLE_CLOUD_PROJECT and GOOGLE_CLOUD_LOCATION must be configured"
            )

        self._text_model = text_model
        self._image_model = image_model
        self._fallback_text_model = fallback_text_model
        self._retry_policy = RetryPolicy(
            max_attempts=max(1, max_retries),
            initial_backoff_seconds=initial_backoff_seconds,
        )
        if rate_limit_backoff_seconds:
            self._retry_policy.rate_limit_backoff_seconds = list(rate_limit_backoff_seconds)

        self.last_request_id: str | None = None
        self.last_model: str | None = None
        self.last_usage: dict | None = None
        self.last_error_type: str | None = None

        self._circuit_breakers = {
            operation: CircuitBreakerState(
                failure_threshold=circuit_breaker_threshold,
                recovery_timeout_seconds=circuit_breaker_timeout,
            )
            for operation in (TEXT_OPERATION, IMAGE_OPERATION)
        }

        http_options = types.HttpOptions(timeout=int(timeout_seconds * 1000))
        if project and location:
            self._client = genai.Client(vertexai=True, project=project, location=location, http_options=http_options)
        else:
            self._client = genai.Client(api_key=api_key, http_options=http_options)

    @property
    def max_attempts(self) -> int:
        return self._retry_policy.max_attempts

    def _call(
        self,
        operation: str,
        model: str,
        send: Callable[[], types.GenerateContentResponse],
    ) -> types.GenerateContentResponse:
        """Send one request under the operation's circuit breaker and the retry policy."""
        breaker = self._circuit_breakers[operation]
        breaker.check_circuit()

        request_id = str(uuid.uuid4())
        self.last_model = model
        error_type = "unknown"
        last_exc: Exception | None = None
        attempt = 0

        while True:
            try:
                with track_gemini_call(operation):
                    response = send()
                _raise_if_blocked(response, request_id, model)
            except GeminiContentFilterError:
                self.last_error_type = "content_filter"
                breaker.record_failure()
                raise
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                error_type, retryable = classify_error(str(exc))
                self.last_error_type = error_type
                logger.warning(
                    "gemini.%s failed request_id=%s model=%s attempt=%s/%s type=%s error=%r",
                    operation,
                    request_id,
                    model,
                    attempt + 1,
                    self.max_attempts,
                    error_type,
                    exc,
                )
                if retryable and attempt + 1 < self.max_attempts:
                    time.sleep(self._retry_policy.backoff(attempt, error_type))
                    attempt += 1
                    continue
                break
            else:
                self.last_request_id = response.response_id or request_id
                self.last_error_type = None
                self.last_usage = (
                    response.usage_metadata.model_dump() if response.usage_metadata else {"model": model}
                )
                breaker.record_success()
                return response

        breaker.record_failure()
        self.last_request_id = request_id
        raise _error_for(error_type, attempt + 1, last_exc, request_id, model)

    def generate_text(
        self,
        prompt: str,
        model: str | None = None,
        use_fallback: bool = True,
        json_mode: bool = False,
    ) -> str:
        """Generate text, optionally constrained to a JSON response.

        A rate-limited, timed-out or unavailable primary model is retried once
        on the fallback text model when one is configured.
        """
        primary = model or self._text_model
        config = types.GenerateContentConfig(
            safety_settings=_CHILD_SAFE_SETTINGS,
            response_mime_type="application/json" if json_mode else None,
        )

        def run(model_name: str) -> str:
            response = self._call(
                TEXT_OPERATION,
                model_name,
                lambda: self._client.models.generate_content(model=model_name, contents=[prompt], config=config),
            )
            texts = [part.text for part in _content_parts(response, model_name) if part.text]
            if not texts:
                raise GeminiError("Gemini returned no textual content", model=model_name)
            return "\n".join(texts).strip()

        try:
            return run(primary)
        except (GeminiRateLimitError, GeminiTimeoutError, GeminiModelUnavailableError) as exc:
            fallback = self._fallback_text_model
            if not (use_fallback and fallback and fallback != primary):
                raise
            logger.warning("gemini_fallback primary=%s fallback=%s error=%s", primary, fallback, exc)
            return run(fallback)

    def generate_image(
        self,
        prompt: str,
        model: str | None = None,
        aspect_ratio: str = "4:3",
        image_size: str | None = "2K",
    ) -> tuple[bytes, str]:
        """Generate one panel image and return ``(image_bytes, mime_type)``."""
        model_name = model or self._image_model
        config = types.GenerateContentConfig(
            response_modalities=["IMAGE"],
            image_config=types.ImageConfig(aspect_ratio=aspect_ratio, image_size=image_size),
            safety_settings=_CHILD_SAFE_SETTINGS,
        )
        response = self._call(
            IMAGE_OPERATION,
            model_name,
            lambda: self._client.models.generate_content(model=model_name, contents=[prompt], config=config),
        )
        for part in _content_parts(response, model_name):
            inline = part.inline_data
            if inline and inline.data:
                return inline.data, inline.mime_type or "image/png"
        raise GeminiError("Gemini returned no image data", model=model_name)

    def get_circuit_breaker_status(self) -> dict[str, dict]:
        return {operation: breaker.status() for operation, breaker in self._circuit_breakers.items()}

    def reset_circuit_breaker(self, operation_type: str | None = None) -> None:
        targets = [operation_type] if operation_type else list(self._circuit_breakers)
        for name in targets:
            breaker = self._circuit_breakers.get(name)
            if breaker is not None:
                breaker.reset()
        logger.info("circuit_reset operations=%s", targets)
