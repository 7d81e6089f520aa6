from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence

from quizreel.config import DurationSettings
from quizreel.models import ClipInput, EventKind, GameEvent, GameSession, SegmentKind
from quizreel.plan.sequence_planner import validate_inputs

DEFAULT_EVENT_TOLERANCE_MS = 100


@dataclass(slots=True, frozen=True)
class JoinContext:
    """What a player joining mid-broadcast should be shown."""

    current_event: GameEvent | None
    next_event: GameEvent | None
    time_in_current_event_ms: int
    should_show_question: bool
    question_number: int | None


def generate_session(
    clips: Sequence[ClipInput],
    durations: DurationSettings,
    *,
    session_id: str,
    video_id: str,
    created_at: str | None = None,
) -> GameSession:
    """Walk the compiled sequence and emit the absolute-timestamped event log.

    Clock arithmetic matches ``plan_sequence`` step for step, so
    question_start/question_end bound the QUESTION segment exactly and the
    total duration is identical to the plan's.
    """

    phases = validate_inputs(clips, durations)
    question_count = len(clips)
    events: list[GameEvent] = []

    def _add(
        kind: EventKind,
        timestamp_ms: int,
        duration_ms: int,
        question_number: int | None = None,
        tick: int | None = None,
        **metadata: Any,
    ) -> None:
        events.append(
            GameEvent(
                id=_event_id(session_id, kind, question_number, tick),
                kind=kind,
                timestamp_ms=timestamp_ms,
                duration_ms=duration_ms,
                question_number=question_number,
                metadata=metadata,
            )
        )

    clock_ms = 0
    _add(EventKind.GAME_START, clock_ms, phases.game_ready_ms, total_questions=question_count, video_id=video_id)
    clock_ms += phases.game_ready_ms

    for question_number, clip in enumerate(clips, start=1):
        common = {
            "question_id": clip.clip_id,
            "is_last_question": question_number == question_count,
            "total_questions": question_count,
        }

        _add(EventKind.QUESTION_READY, clock_ms, phases.question_ready_ms, question_number, **common)
        clock_ms += phases.question_ready_ms

        clip_ms = phases.for_kind(SegmentKind.QUESTION, clip)
        _add(EventKind.QUESTION_START, clock_ms, clip_ms, question_number, **common)
        clock_ms += clip_ms
        _add(EventKind.QUESTION_END, clock_ms, 0, question_number, **common)

        _add(EventKind.TIME_STARTS, clock_ms, phases.time_starts_ms, question_number, **common)
        clock_ms += phases.time_starts_ms

        countdown_seconds = durations.countdown_seconds
        countdown_start_ms = clock_ms
        _add(
            EventKind.COUNTDOWN_START,
            countdown_start_ms,
            phases.countdown_ms,
            question_number,
            countdown_value=countdown_seconds,
            **common,
        )
        for tick in range(countdown_seconds, 0, -1):
            _add(
                EventKind.COUNTDOWN_TICK,
                countdown_start_ms + (countdown_seconds - tick) * 1000,
                1000,
                question_number,
                tick,
                countdown_value=tick,
                **common,
            )
        clock_ms += phases.countdown_ms

        _add(EventKind.TIME_UP, clock_ms, phases.fetching_ms, question_number, **common)
        clock_ms += phases.fetching_ms

        _add(EventKind.RESULTS_START, clock_ms, phases.leaderboard_ms, question_number, **common)
        clock_ms += phases.leaderboard_ms
        _add(EventKind.RESULTS_END, clock_ms, 0, question_number, **common)

    _add(EventKind.GAME_END, clock_ms, 0, total_questions=question_count, video_id=video_id)

    return GameSession(
        session_id=session_id,
        video_id=video_id,
        total_duration_ms=clock_ms,
        question_count=question_count,
        events=events,
        created_at=created_at or datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
    )


def current_event(session: GameSession, at_ms: int) -> GameEvent | None:
    """First event whose span contains ``at_ms``; zero-length markers never match."""

    for event in session.events:
        if event.timestamp_ms <= at_ms < event.end_ms:
            return event
    return None


def next_event(session: GameSession, at_ms: int) -> GameEvent | None:
    for event in session.events:
        if event.timestamp_ms > at_ms:
            return event
    return None


def events_at_time(session: GameSession, at_ms: int, tolerance_ms: int = DEFAULT_EVENT_TOLERANCE_MS) -> list[GameEvent]:
    return [event for event in session.events if abs(event.timestamp_ms - at_ms) <= tolerance_ms]


def question_events(session: GameSession, question_number: int) -> list[GameEvent]:
    return [event for event in session.events if event.question_number == question_number]


def join_context(session: GameSession, join_time_ms: int, video_start_time_ms: int) -> JoinContext:
    """Resolve current/next events for a player joining at an absolute wall-clock time.

    ``current_event`` is None before the first event or after the last one;
    callers decide between "not started" and "ended" from ``next_event``.
    """

    video_time_ms = join_time_ms - video_start_time_ms
    active = current_event(session, video_time_ms)
    return JoinContext(
        current_event=active,
        next_event=next_event(session, video_time_ms),
        time_in_current_event_ms=video_time_ms - active.timestamp_ms if active else 0,
        should_show_question=active is not None and active.kind is EventKind.QUESTION_START,
        question_number=active.question_number if active else None,
    )


def _event_id(session_id: str, kind: EventKind, question_number: int | None, tick: int | None) -> str:
    parts = [session_id, kind.value]
    if question_number:
        parts.append(f"q{question_number}")
    if tick is not None:
        parts.append(f"t{tick}")
    return "_".join(parts)
