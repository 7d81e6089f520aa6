from __future__ import annotations

import logging

from quizreel.models import MaterializedSegment, PlannedSegment, seconds_to_ms
from quizreel.render.commands import OutputTarget, build_fallback_args
from quizreel.render.engine import EngineError, TranscodingEngine

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_COLOR = "blue"
DEFAULT_FALLBACK_MAX_SECONDS = 10.0


def synthesize_fallback(
    engine: TranscodingEngine,
    segment: PlannedSegment,
    output_name: str,
    target: OutputTarget,
    *,
    color: str = DEFAULT_FALLBACK_COLOR,
    max_seconds: float = DEFAULT_FALLBACK_MAX_SECONDS,
) -> MaterializedSegment:
    """Render a solid-colour clip with silent audio in place of a failed segment.

    Codec parameters match ``target`` so the stand-in concatenates cleanly.
    """

    duration_ms = min(segment.duration_ms, seconds_to_ms(max_seconds))
    engine.delete_file(output_name)
    engine.exec(build_fallback_args(output_name, target, duration_ms, color))

    data = engine.read_file(output_name)
    if not data:
        raise EngineError(f"Fallback clip for segment {segment.index} came out empty.")

    logger.info(
        "Fallback clip for segment %d (%s) rendered: %d ms, %d bytes",
        segment.index,
        segment.kind.value,
        duration_ms,
        len(data),
    )
    return MaterializedSegment(
        segment=segment,
        filename=output_name,
        size_bytes=len(data),
        is_fallback=True,
        rendered_duration_ms=duration_ms,
    )
