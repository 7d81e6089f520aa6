from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from quizreel.config import AudioSettings
from quizreel.models import MaterializedSegment
from quizreel.render.commands import (
    OutputTarget,
    build_background_mix_filter,
    build_concat_args,
    build_concat_manifest,
    build_concat_with_background_args,
)
from quizreel.render.engine import EngineError, TranscodingEngine

logger = logging.getLogger(__name__)

MANIFEST_NAME = "concat_list.txt"
OUTPUT_NAME = "final_output.mp4"


class ConcatenationError(RuntimeError):
    """Raised when no playable output could be produced."""


def concatenate_segments(
    engine: TranscodingEngine,
    segments: Sequence[MaterializedSegment],
    target: OutputTarget,
    audio: AudioSettings,
    *,
    total_duration_ms: int,
    background_audio: bytes | None = None,
    background_name: str = "background_audio.mp3",
    output_name: str = OUTPUT_NAME,
) -> bytes:
    """Join materialized segments in plan order with a video stream copy.

    With a background track the first attempt mixes it under the existing
    audio; if that fails the join is retried once without it. When no mix
    happens, ``original_volume`` is applied here only if the segments were
    rendered without it.
    """

    if not segments:
        raise ConcatenationError("Nothing to concatenate: no materialized segments.")

    ordered = sorted(segments, key=lambda item: item.segment.index)
    engine.write_file(MANIFEST_NAME, build_concat_manifest([item.filename for item in ordered]).encode("utf-8"))

    if background_audio:
        engine.write_file(background_name, background_audio)
        mix_filter = build_background_mix_filter(
            preserve_original=audio.preserve_original_audio,
            original_volume=audio.original_volume,
            background_volume=audio.background_volume,
            fade_in_seconds=audio.fade_in_seconds,
            fade_out_seconds=audio.fade_out_seconds,
            total_duration_ms=total_duration_ms,
        )
        try:
            engine.exec(build_concat_with_background_args(MANIFEST_NAME, background_name, output_name, target, mix_filter))
            return _read_output(engine, output_name)
        except EngineError as exc:
            logger.warning("Background audio mix failed, concatenating without it: %s", exc)
        finally:
            engine.delete_file(background_name)

    # Segments skip original_volume at render time when a background mix was planned.
    deferred_volume = audio.original_volume if background_audio and audio.preserve_original_audio else None
    try:
        engine.exec(build_concat_args(MANIFEST_NAME, output_name, target, original_volume=deferred_volume))
        return _read_output(engine, output_name)
    except EngineError as exc:
        raise ConcatenationError(f"Concatenation failed: {exc}") from exc


def load_background_audio(path: str | Path | None) -> bytes | None:
    if path is None:
        return None
    source = Path(path).expanduser()
    try:
        data = source.read_bytes()
    except OSError as exc:
        logger.warning("Background audio %s is unreadable, continuing without it: %s", source, exc)
        return None
    return data or None


def _read_output(engine: TranscodingEngine, output_name: str) -> bytes:
    data = engine.read_file(output_name)
    if not data:
        raise EngineError(f"ffmpeg produced an empty {output_name}")
    return data
