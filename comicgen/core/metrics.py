from __future__ import annotations

from contextlib import contextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

registry = CollectorRegistry(auto_describe=True)

PIPELINE_STAGE_DURATION = Histogram(
    "comicgen_pipeline_stage_duration_seconds",
    "Duration (seconds) of each comic pipeline stage.",
    ["stage"],
    registry=registry,
)

JSON_PARSE_FAILURES = Counter(
    "comicgen_json_parse_failures_total",
    "Number of times parsing JSON from Gemini failed, labeled by the extraction tier.",
    ["tier"],
    registry=registry,
)

GEMINI_CALL_DURATION = Histogram(
    "comicgen_gemini_call_duration_seconds",
    "Latency for Gemini API calls per operation.",
    ["operation"],
    registry=registry,
)

GEMINI_CALLS_TOTAL = Counter(
    "comicgen_gemini_calls_total",
    "Total Gemini API calls partitioned by operation and status.",
    ["operation", "status"],
    registry=registry,
)

TOOL_CALLS_TOTAL = Counter(
    "comicgen_tool_calls_total",
    "Tool invocations partitioned by tool name and outcome.",
    ["tool", "status"],
    registry=registry,
)

MEDIA_UPLOADS_TOTAL = Counter(
    "comicgen_media_uploads_total",
    "Object storage uploads partitioned by bucket and outcome.",
    ["bucket", "status"],
    registry=registry,
)

COMICS_GENERATED_TOTAL = Counter(
    "comicgen_comics_generated_total",
    "Completed comic pipeline runs, labeled by language.",
    ["language"],
    registry=registry,
)


@contextmanager
def track_pipeline_stage(stage: str):
    with PIPELINE_STAGE_DURATION.labels(stage=stage).time():
        yield


def increment_json_parse_failure(tier: str) -> None:
    JSON_PARSE_FAILURES.labels(tier=tier).inc()


@contextmanager
def track_gemini_call(operation: str):
    timer = GEMINI_CALL_DURATION.labels(operation=operation).time()
    timer.__enter__()
    try:
        yield
        GEMINI_CALLS_TOTAL.labels(operation=operation, status="success").inc()
    except Exception:
        GEMINI_CALLS_TOTAL.labels(operation=operation, status="error").inc()
        raise
    finally:
        timer.__exit__(None, None, None)


def record_tool_call(tool: str, success: bool) -> None:
    TOOL_CALLS_TOTAL.labels(tool=tool, status="success" if success else "error").inc()


def record_media_upload(bucket: str, success: bool) -> None:
    MEDIA_UPLOADS_TOTAL.labels(bucket=bucket, status="success" if success else "error").inc()


def record_comic_generated(language: str) -> None:
    COMICS_GENERATED_TOTAL.labels(language=language).inc()


def get_metrics_payload() -> bytes:
    return generate_latest(registry)
