from __future__ import annotations

import logging
import threading
from pathlib import Path
from time import perf_counter
from typing import Callable, Sequence

from quizreel.config import CompilationSettings
from quizreel.ingest.probe import probe_clips
from quizreel.models import (
    ClipInput,
    CompilationProgress,
    CompilationResult,
    GameSession,
    JobState,
    MaterializedSegment,
    SequencePlan,
)
from quizreel.overlays.catalog import OverlayCatalog
from quizreel.plan.sequence_planner import (
    MAX_QUESTIONS,
    MIN_QUESTIONS,
    PlanValidationError,
    plan_sequence,
    renderable_segments,
    segment_display_name,
)
from quizreel.plan.timestamps import generate_session
from quizreel.render.commands import resolve_output_target
from quizreel.render.concatenator import (
    MANIFEST_NAME,
    OUTPUT_NAME,
    ConcatenationError,
    concatenate_segments,
    load_background_audio,
)
from quizreel.render.engine import EngineError, FfmpegEngine, TranscodingEngine
from quizreel.render.materializer import (
    SegmentMaterializationError,
    SegmentMaterializer,
    segment_filename,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[CompilationProgress], None]
EngineFactory = Callable[[], TranscodingEngine]

BACKGROUND_AUDIO_NAME = "background_audio.mp3"


class CompilationError(RuntimeError):
    """A fatal job failure; ``state`` is where the job was when it failed."""

    def __init__(self, message: str, *, state: JobState) -> None:
        super().__init__(message)
        self.state = state


class CompilationCancelled(RuntimeError):
    """The job stopped at a state boundary because cancellation was requested."""

    def __init__(self, state: JobState) -> None:
        super().__init__(f"Compilation cancelled during {state.value}")
        self.state = state


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class CompilationJob:
    """Drives probe -> plan -> materialize -> concatenate for one output video.

    The job owns its engine handle for the whole run and removes every file
    it created on every exit path. Segment failures are absorbed by fallback
    clips; validation, concatenation and fallback failures end the job.
    """

    def __init__(
        self,
        settings: CompilationSettings,
        catalog: OverlayCatalog,
        *,
        engine_factory: EngineFactory | None = None,
        work_dir: str | Path | None = None,
        progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.settings = settings
        self.catalog = catalog
        self.engine_factory = engine_factory or (lambda: FfmpegEngine(work_dir))
        self.progress = progress
        self.cancel_token = cancel_token or CancellationToken()
        self.state = JobState.IDLE
        self._started_at = 0.0
        self._total_segments = 0

    def run(
        self,
        clip_paths: Sequence[str | Path] = (),
        *,
        clips: Sequence[ClipInput] | None = None,
        session_id: str,
        video_id: str,
        created_at: str | None = None,
    ) -> CompilationResult:
        self._started_at = perf_counter()
        engine: TranscodingEngine | None = None
        created_files: list[str] = []

        try:
            clip_count = len(clips) if clips is not None else len(clip_paths)
            if not MIN_QUESTIONS <= clip_count <= MAX_QUESTIONS:
                raise PlanValidationError(
                    f"question count out of range: got {clip_count}, expected {MIN_QUESTIONS}-{MAX_QUESTIONS}"
                )

            self._enter(JobState.PROBING, 2, f"Probing {clip_count} question clips...")
            if clips is None:
                clips = probe_clips(clip_paths, max_workers=self.settings.probe_workers)

            self._enter(JobState.PLANNING, 8, "Planning segment sequence...")
            plan = plan_sequence(clips, self.settings.durations)
            session = generate_session(
                clips,
                self.settings.durations,
                session_id=session_id,
                video_id=video_id,
                created_at=created_at,
            )
            if plan.total_duration_ms != session.total_duration_ms:
                raise CompilationError(
                    f"Plan and timeline disagree: {plan.total_duration_ms} ms vs {session.total_duration_ms} ms",
                    state=JobState.PLANNING,
                )

            segments = renderable_segments(plan)
            self._total_segments = len(segments)
            logger.info(
                "Planned %d segments for %d questions, total %d ms",
                len(segments),
                len(clips),
                plan.total_duration_ms,
            )

            engine = self.engine_factory()
            audio = self.settings.audio
            target = resolve_output_target(self.settings.output, audio, clips)
            background_audio = load_background_audio(audio.background_audio_path)
            materializer = SegmentMaterializer(
                engine,
                self.catalog,
                target,
                audio,
                self.settings.output,
                apply_original_volume=not (background_audio and audio.preserve_original_audio),
            )

            materialized: list[MaterializedSegment] = []
            for position, segment in enumerate(segments):
                self._enter(
                    JobState.MATERIALIZING,
                    10 + (position / len(segments)) * 70,
                    f"Processing {segment_display_name(segment)}...",
                    current_segment_index=position + 1,
                    segment_name=segment_display_name(segment),
                    estimated_remaining_ms=self._estimate_remaining_ms(position, len(segments)),
                )
                created_files.append(segment_filename(segment))
                materialized.append(materializer.materialize(segment))

            self._enter(JobState.CONCATENATING, 82, "Combining segments...")
            created_files.extend([MANIFEST_NAME, BACKGROUND_AUDIO_NAME, OUTPUT_NAME])
            output = concatenate_segments(
                engine,
                materialized,
                target,
                audio,
                total_duration_ms=plan.total_duration_ms,
                background_audio=background_audio,
                background_name=BACKGROUND_AUDIO_NAME,
                output_name=OUTPUT_NAME,
            )

            self._enter(JobState.FINALIZING, 95, "Finalizing video...")
            result = CompilationResult(
                output=output,
                session=session,
                plan=plan,
                failures=list(materializer.failures),
                state=JobState.COMPLETE,
            )
            self._transition(
                JobState.COMPLETE,
                100,
                f"Video compilation complete! Size: {round(len(output) / 1024 / 1024)}MB",
            )
            if result.failures:
                logger.warning("Compilation finished with %d fallback segment(s)", len(result.failures))
            return result
        except CompilationCancelled as exc:
            self._transition(JobState.CANCELLED, 0, str(exc))
            raise
        except PlanValidationError as exc:
            self._transition(JobState.ERROR, 0, f"Validation failed: {exc}")
            raise
        except CompilationError as exc:
            self._transition(JobState.ERROR, 0, f"Compilation failed: {exc}")
            raise
        except (
            ConcatenationError,
            SegmentMaterializationError,
            EngineError,
            RuntimeError,
            OSError,
            ValueError,
        ) as exc:
            failed_state = self.state
            self._transition(JobState.ERROR, 0, f"Compilation failed: {exc}")
            raise CompilationError(str(exc), state=failed_state) from exc
        finally:
            if engine is not None:
                self._cleanup(engine, created_files)

    def _enter(self, state: JobState, percent: float, message: str, **details: object) -> None:
        if self.cancel_token.cancelled:
            raise CompilationCancelled(self.state)
        self._transition(state, percent, message, **details)

    def _transition(self, state: JobState, percent: float, message: str, **details: object) -> None:
        if state is not self.state:
            logger.info("Compilation %s -> %s", self.state.value, state.value)
        self.state = state
        if self.progress is None:
            return
        self.progress(
            CompilationProgress(
                stage=state,
                percent=round(percent, 1),
                total_segments=self._total_segments,
                message=message,
                elapsed_ms=int((perf_counter() - self._started_at) * 1000),
                **details,  # type: ignore[arg-type]
            )
        )

    def _estimate_remaining_ms(self, finished: int, total: int) -> int | None:
        if finished == 0:
            return None
        elapsed_ms = (perf_counter() - self._started_at) * 1000
        return int(round(elapsed_ms / finished * (total - finished)))

    def _cleanup(self, engine: TranscodingEngine, created_files: list[str]) -> None:
        for name in dict.fromkeys(created_files):
            try:
                engine.delete_file(name)
            except (EngineError, OSError) as exc:
                logger.warning("Could not delete engine file %s: %s", name, exc)

        close = getattr(engine, "close", None)
        if callable(close):
            close()


def compile_quiz_video(
    clip_paths: Sequence[str | Path],
    settings: CompilationSettings,
    catalog: OverlayCatalog,
    *,
    session_id: str,
    video_id: str,
    work_dir: str | Path | None = None,
    progress: ProgressCallback | None = None,
    cancel_token: CancellationToken | None = None,
) -> tuple[bytes, GameSession, SequencePlan]:
    """Convenience wrapper returning the output bytes, timeline and plan."""

    result = CompilationJob(
        settings,
        catalog,
        work_dir=work_dir,
        progress=progress,
        cancel_token=cancel_token,
    ).run(clip_paths, session_id=session_id, video_id=video_id)
    return result.output, result.session, result.plan
