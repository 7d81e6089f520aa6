from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

SESSION_FORMAT_VERSION = "1.0.0"


def seconds_to_ms(seconds: float) -> int:
    """Convert seconds to whole milliseconds, the timeline's unit."""

    return int(round(float(seconds) * 1000))


class SegmentKind(str, Enum):
    GAME_READY = "game_ready"
    QUESTION_READY = "question_ready"
    QUESTION = "question"
    TIME_STARTS = "time_starts"
    COUNTDOWN = "countdown"
    FETCHING = "fetching"
    LEADERBOARD = "leaderboard"
    GAME_END = "game_end"


class OverlayKey(str, Enum):
    GAME_READY = "game_ready"
    QUESTION_READY = "question_ready"
    TIME_STARTS = "time_starts"
    COUNTDOWN = "countdown"
    FETCHING = "fetching"
    LEADERBOARD = "leaderboard"


class EventKind(str, Enum):
    GAME_START = "game_start"
    QUESTION_READY = "question_ready"
    QUESTION_START = "question_start"
    QUESTION_END = "question_end"
    TIME_STARTS = "time_starts"
    COUNTDOWN_START = "countdown_start"
    COUNTDOWN_TICK = "countdown_tick"
    TIME_UP = "time_up"
    RESULTS_START = "results_start"
    RESULTS_END = "results_end"
    GAME_END = "game_end"


class JobState(str, Enum):
    IDLE = "idle"
    PROBING = "probing"
    PLANNING = "planning"
    MATERIALIZING = "materializing"
    CONCATENATING = "concatenating"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(slots=True, frozen=True)
class ClipInput:
    """One uploaded question video with its probed properties."""

    clip_id: str
    path: Path
    duration_ms: int | None = None
    width: int | None = None
    height: int | None = None
    has_audio: bool = True

    def read_bytes(self) -> bytes:
        return Path(self.path).read_bytes()


@dataclass(slots=True, frozen=True)
class PlannedSegment:
    """One contiguous span of the output video, sourced from a clip or an overlay."""

    index: int
    kind: SegmentKind
    start_ms: int
    duration_ms: int
    question_number: int | None = None
    clip: ClipInput | None = None
    overlay_key: OverlayKey | None = None

    @property
    def end_ms(self) -> int:
        return self.start_ms + self.duration_ms

    @property
    def is_overlay(self) -> bool:
        return self.overlay_key is not None


@dataclass(slots=True, frozen=True)
class SequencePlan:
    segments: list[PlannedSegment]
    total_duration_ms: int


@dataclass(slots=True, frozen=True)
class GameEvent:
    """A timestamped entry in the production timeline."""

    id: str
    kind: EventKind
    timestamp_ms: int
    duration_ms: int
    question_number: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def end_ms(self) -> int:
        return self.timestamp_ms + self.duration_ms

    @property
    def countdown_value(self) -> int | None:
        value = self.metadata.get("countdown_value")
        return int(value) if value is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value,
            "timestamp_ms": self.timestamp_ms,
            "duration_ms": self.duration_ms,
            "question_number": self.question_number,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> GameEvent:
        question_number = row.get("question_number")
        return cls(
            id=str(row["id"]),
            kind=EventKind(row["type"]),
            timestamp_ms=int(row["timestamp_ms"]),
            duration_ms=int(row["duration_ms"]),
            question_number=int(question_number) if question_number is not None else None,
            metadata=dict(row.get("metadata") or {}),
        )


@dataclass(slots=True, frozen=True)
class GameSession:
    """The exportable production timeline of one compiled video."""

    session_id: str
    video_id: str
    total_duration_ms: int
    question_count: int
    events: list[GameEvent]
    created_at: str
    format_version: str = SESSION_FORMAT_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "video_id": self.video_id,
            "total_duration_ms": self.total_duration_ms,
            "question_count": self.question_count,
            "events": [event.to_dict() for event in self.events],
            "created_at": self.created_at,
            "format_version": self.format_version,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> GameSession:
        events = payload.get("events")
        if not isinstance(events, list):
            raise ValueError("Game session payload must contain an events array.")
        return cls(
            session_id=str(payload["session_id"]),
            video_id=str(payload["video_id"]),
            total_duration_ms=int(payload["total_duration_ms"]),
            question_count=int(payload["question_count"]),
            events=[GameEvent.from_dict(row) for row in events],
            created_at=str(payload["created_at"]),
            format_version=str(payload.get("format_version", SESSION_FORMAT_VERSION)),
        )


@dataclass(slots=True, frozen=True)
class MaterializedSegment:
    """A planned segment rendered to a normalized file in the engine workspace."""

    segment: PlannedSegment
    filename: str
    size_bytes: int
    is_fallback: bool = False
    rendered_duration_ms: int | None = None


@dataclass(slots=True, frozen=True)
class SegmentFailure:
    segment_index: int
    kind: SegmentKind
    question_number: int | None
    reason: str


@dataclass(slots=True, frozen=True)
class CompilationProgress:
    stage: JobState
    percent: float
    total_segments: int
    message: str
    current_segment_index: int | None = None
    segment_name: str | None = None
    elapsed_ms: int = 0
    estimated_remaining_ms: int | None = None


@dataclass(slots=True)
class CompilationResult:
    output: bytes
    session: GameSession
    plan: SequencePlan
    failures: list[SegmentFailure] = field(default_factory=list)
    state: JobState = JobState.COMPLETE
