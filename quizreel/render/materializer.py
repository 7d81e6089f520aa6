from __future__ import annotations

import logging
import re
from pathlib import Path

from quizreel.config import AudioSettings, OutputSettings
from quizreel.models import MaterializedSegment, PlannedSegment, SegmentFailure, SegmentKind
from quizreel.overlays.catalog import OverlayCatalog, OverlayNotFoundError
from quizreel.render.commands import OutputTarget, build_overlay_args, build_question_args
from quizreel.render.engine import EngineError, TranscodingEngine
from quizreel.render.fallback import synthesize_fallback

logger = logging.getLogger(__name__)

INPUT_EXTENSIONS = re.compile(r"^(mp4|mov|webm|mkv|gif|webp|avi)$")


class SegmentMaterializationError(RuntimeError):
    """Raised when neither the segment nor its fallback could be rendered."""


class SegmentMaterializer:
    """Renders planned segments into homogeneous clips on a job-owned engine.

    A failed render is replaced by one fallback clip and recorded in
    ``failures``; only a failing fallback raises.
    """

    def __init__(
        self,
        engine: TranscodingEngine,
        catalog: OverlayCatalog,
        target: OutputTarget,
        audio: AudioSettings,
        output: OutputSettings,
        *,
        apply_original_volume: bool = True,
    ) -> None:
        self.engine = engine
        self.catalog = catalog
        self.target = target
        self.audio = audio
        self.output = output
        self.apply_original_volume = apply_original_volume
        self.failures: list[SegmentFailure] = []

    def materialize(self, segment: PlannedSegment) -> MaterializedSegment:
        output_name = segment_filename(segment)
        try:
            return self._render(segment, output_name)
        except (EngineError, OverlayNotFoundError, OSError, ValueError) as exc:
            logger.warning(
                "Segment %d (%s, question %s) failed, using fallback clip: %s",
                segment.index,
                segment.kind.value,
                segment.question_number,
                exc,
            )
            self.failures.append(
                SegmentFailure(
                    segment_index=segment.index,
                    kind=segment.kind,
                    question_number=segment.question_number,
                    reason=str(exc),
                )
            )

        try:
            return synthesize_fallback(
                self.engine,
                segment,
                output_name,
                self.target,
                color=self.output.fallback_color,
                max_seconds=self.output.fallback_max_seconds,
            )
        except (EngineError, OSError) as exc:
            raise SegmentMaterializationError(
                f"Segment {segment.index} ({segment.kind.value}) and its fallback both failed: {exc}"
            ) from exc

    def _render(self, segment: PlannedSegment, output_name: str) -> MaterializedSegment:
        source_bytes, source_path = self._load_source(segment)
        input_name = f"input_{segment.index:03d}.{_input_extension(source_path)}"
        self.engine.write_file(input_name, source_bytes)

        try:
            if segment.kind is SegmentKind.QUESTION:
                clip = segment.clip
                keep_audio = self.audio.preserve_original_audio and clip is not None and clip.has_audio
                args = build_question_args(
                    input_name,
                    output_name,
                    self.target,
                    segment.duration_ms,
                    keep_audio=keep_audio,
                    volume=self.audio.original_volume if self.apply_original_volume else None,
                )
            else:
                args = build_overlay_args(input_name, output_name, self.target, segment.duration_ms)

            self.engine.exec(args)
            data = self.engine.read_file(output_name)
        finally:
            self.engine.delete_file(input_name)

        if not data:
            raise EngineError(f"ffmpeg produced an empty file for segment {segment.index}")

        logger.debug("Segment %d (%s) rendered: %d bytes", segment.index, segment.kind.value, len(data))
        return MaterializedSegment(
            segment=segment,
            filename=output_name,
            size_bytes=len(data),
            rendered_duration_ms=segment.duration_ms,
        )

    def _load_source(self, segment: PlannedSegment) -> tuple[bytes, Path]:
        if segment.kind is SegmentKind.QUESTION:
            if segment.clip is None:
                raise ValueError(f"Question segment {segment.index} has no clip attached.")
            data = segment.clip.read_bytes()
            if not data:
                raise ValueError(f"Question clip {segment.clip.clip_id} is empty.")
            return data, Path(segment.clip.path)

        if segment.overlay_key is None:
            raise ValueError(f"Segment {segment.index} ({segment.kind.value}) has no source.")
        path = self.catalog.overlay_path(segment.overlay_key, segment.question_number)
        return self.catalog.resolve(segment.overlay_key, segment.question_number), path


def segment_filename(segment: PlannedSegment) -> str:
    return f"segment_{segment.index:03d}.mp4"


def _input_extension(path: Path) -> str:
    extension = path.suffix.lstrip(".").split("?")[0].split("#")[0].lower()
    return extension if INPUT_EXTENSIONS.match(extension) else "mp4"
