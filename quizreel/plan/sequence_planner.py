from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from quizreel.config import DurationSettings
from quizreel.models import (
    ClipInput,
    OverlayKey,
    PlannedSegment,
    SegmentKind,
    SequencePlan,
    seconds_to_ms,
)

MIN_QUESTIONS = 2
MAX_QUESTIONS = 6

# Per-question order after the ready screen; the clip sits between ready and time-starts.
QUESTION_PHASES: tuple[SegmentKind, ...] = (
    SegmentKind.QUESTION_READY,
    SegmentKind.QUESTION,
    SegmentKind.TIME_STARTS,
    SegmentKind.COUNTDOWN,
    SegmentKind.FETCHING,
    SegmentKind.LEADERBOARD,
)

OVERLAY_FOR_KIND: dict[SegmentKind, OverlayKey] = {
    SegmentKind.GAME_READY: OverlayKey.GAME_READY,
    SegmentKind.QUESTION_READY: OverlayKey.QUESTION_READY,
    SegmentKind.TIME_STARTS: OverlayKey.TIME_STARTS,
    SegmentKind.COUNTDOWN: OverlayKey.COUNTDOWN,
    SegmentKind.FETCHING: OverlayKey.FETCHING,
    SegmentKind.LEADERBOARD: OverlayKey.LEADERBOARD,
}

DISPLAY_NAMES: dict[SegmentKind, str] = {
    SegmentKind.GAME_READY: "Game Get Ready",
    SegmentKind.TIME_STARTS: "Time Starts",
    SegmentKind.COUNTDOWN: "Countdown",
    SegmentKind.FETCHING: "Time Up - Fetching Results",
    SegmentKind.LEADERBOARD: "Leaderboard/Results",
    SegmentKind.GAME_END: "Game End",
}


class PlanValidationError(ValueError):
    """Raised when clips or durations cannot form a valid sequence."""


@dataclass(slots=True, frozen=True)
class PhaseDurations:
    """Configured overlay durations converted once to milliseconds."""

    game_ready_ms: int
    question_ready_ms: int
    time_starts_ms: int
    countdown_ms: int
    fetching_ms: int
    leaderboard_ms: int

    def for_kind(self, kind: SegmentKind, clip: ClipInput) -> int:
        if kind is SegmentKind.QUESTION:
            return question_duration_ms(clip)
        return {
            SegmentKind.GAME_READY: self.game_ready_ms,
            SegmentKind.QUESTION_READY: self.question_ready_ms,
            SegmentKind.TIME_STARTS: self.time_starts_ms,
            SegmentKind.COUNTDOWN: self.countdown_ms,
            SegmentKind.FETCHING: self.fetching_ms,
            SegmentKind.LEADERBOARD: self.leaderboard_ms,
            SegmentKind.GAME_END: 0,
        }[kind]


def validate_inputs(clips: Sequence[ClipInput], durations: DurationSettings) -> PhaseDurations:
    """Fail fast on anything that would make the plan meaningless."""

    if not MIN_QUESTIONS <= len(clips) <= MAX_QUESTIONS:
        raise PlanValidationError(
            f"question count out of range: got {len(clips)}, expected {MIN_QUESTIONS}-{MAX_QUESTIONS}"
        )

    configured = {
        "game_ready_seconds": durations.game_ready_seconds,
        "question_ready_seconds": durations.question_ready_seconds,
        "time_starts_seconds": durations.time_starts_seconds,
        "countdown_seconds": durations.countdown_seconds,
        "fetching_seconds": durations.fetching_seconds,
        "leaderboard_seconds": durations.leaderboard_seconds,
    }
    non_positive = [name for name, value in configured.items() if value is None or value <= 0]
    if non_positive:
        raise PlanValidationError(f"configured durations must be positive: {', '.join(non_positive)}")

    for index, clip in enumerate(clips, start=1):
        if clip.duration_ms is None or clip.duration_ms <= 0:
            raise PlanValidationError(f"question {index} ({clip.clip_id}) has no probed duration")

    return PhaseDurations(
        game_ready_ms=seconds_to_ms(durations.game_ready_seconds),
        question_ready_ms=seconds_to_ms(durations.question_ready_seconds),
        time_starts_ms=seconds_to_ms(durations.time_starts_seconds),
        countdown_ms=durations.countdown_seconds * 1000,
        fetching_ms=seconds_to_ms(durations.fetching_seconds),
        leaderboard_ms=seconds_to_ms(durations.leaderboard_seconds),
    )


def question_duration_ms(clip: ClipInput) -> int:
    if clip.duration_ms is None:
        raise PlanValidationError(f"clip {clip.clip_id} has no probed duration")
    return clip.duration_ms


def plan_sequence(clips: Sequence[ClipInput], durations: DurationSettings) -> SequencePlan:
    """Build the ordered, contiguous segment plan for one compiled video.

    Order: game-ready, then for every clip ready -> clip -> time-starts ->
    countdown -> fetching -> leaderboard, then a zero-length game-end marker.
    """

    phases = validate_inputs(clips, durations)

    segments: list[PlannedSegment] = []
    clock_ms = 0

    def _emit(kind: SegmentKind, duration_ms: int, question_number: int | None, clip: ClipInput | None) -> None:
        nonlocal clock_ms
        segments.append(
            PlannedSegment(
                index=len(segments),
                kind=kind,
                start_ms=clock_ms,
                duration_ms=duration_ms,
                question_number=question_number,
                clip=clip if kind is SegmentKind.QUESTION else None,
                overlay_key=OVERLAY_FOR_KIND.get(kind),
            )
        )
        clock_ms += duration_ms

    _emit(SegmentKind.GAME_READY, phases.game_ready_ms, None, None)
    for question_number, clip in enumerate(clips, start=1):
        for kind in QUESTION_PHASES:
            _emit(kind, phases.for_kind(kind, clip), question_number, clip)
    _emit(SegmentKind.GAME_END, 0, None, None)

    return SequencePlan(segments=segments, total_duration_ms=clock_ms)


def renderable_segments(plan: SequencePlan) -> list[PlannedSegment]:
    """Segments that produce video; the zero-length game-end marker does not."""

    return [segment for segment in plan.segments if segment.duration_ms > 0]


def segment_display_name(segment: PlannedSegment) -> str:
    if segment.kind is SegmentKind.QUESTION_READY:
        return f"Question {segment.question_number} Ready"
    if segment.kind is SegmentKind.QUESTION:
        return f"Question {segment.question_number} Video"
    return DISPLAY_NAMES[segment.kind]
