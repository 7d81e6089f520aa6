from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from quizreel.models import OverlayKey

logger = logging.getLogger(__name__)

DEFAULT_OVERLAY_FILES: dict[OverlayKey, str] = {
    OverlayKey.GAME_READY: "game_get_ready.gif",
    OverlayKey.TIME_STARTS: "question_time_starts.gif",
    OverlayKey.COUNTDOWN: "question_countdown.gif",
    OverlayKey.FETCHING: "time_up_fetching.gif",
    OverlayKey.LEADERBOARD: "question_leaderboard.gif",
}
NUMBER_WORDS = ("one", "two", "three", "four", "five", "six")
MAX_QUESTIONS = 6


class OverlayNotFoundError(LookupError):
    """Raised when an overlay has no readable source file."""


@dataclass(slots=True)
class OverlayValidation:
    valid: bool
    missing: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)


class OverlayCatalog:
    """Resolves logical overlay keys to bundled or caller-supplied clip files.

    Overrides are keyed by overlay key value (``"countdown"``) or, for the
    numbered ready screens, ``"question_ready_<n>"``; a plain
    ``"question_ready"`` override applies to every question.
    """

    def __init__(self, asset_dir: str | Path, overrides: Mapping[str, str | Path] | None = None) -> None:
        self.asset_dir = Path(asset_dir).expanduser()
        self.overrides = {key: Path(value).expanduser() for key, value in (overrides or {}).items()}

    def overlay_path(self, key: OverlayKey, question_index: int | None = None) -> Path:
        if key is OverlayKey.QUESTION_READY:
            if question_index is None or question_index < 1:
                raise ValueError("question_ready overlays need a 1-based question index.")
            numbered = self.overrides.get(f"question_ready_{question_index}")
            if numbered is not None:
                return numbered
            shared = self.overrides.get(key.value)
            if shared is not None:
                return shared
            return self.asset_dir / f"question_{_number_word(question_index)}.gif"

        override = self.overrides.get(key.value)
        if override is not None:
            return override
        return self.asset_dir / DEFAULT_OVERLAY_FILES[key]

    def resolve(self, key: OverlayKey, question_index: int | None = None) -> bytes:
        path = self.overlay_path(key, question_index)
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise OverlayNotFoundError(f"Overlay '{key.value}' is not readable at {path}: {exc}") from exc
        if not data:
            raise OverlayNotFoundError(f"Overlay '{key.value}' at {path} is empty.")
        return data

    def validate_overlay_files(self, max_questions: int = MAX_QUESTIONS) -> OverlayValidation:
        """Check that every overlay needed for up to ``max_questions`` exists."""

        candidates = [self.overlay_path(key) for key in DEFAULT_OVERLAY_FILES]
        candidates.extend(
            self.overlay_path(OverlayKey.QUESTION_READY, index) for index in range(1, max_questions + 1)
        )

        existing: list[str] = []
        missing: list[str] = []
        for path in candidates:
            target = existing if path.is_file() else missing
            if str(path) not in target:
                target.append(str(path))

        if missing:
            logger.warning("Missing %d overlay file(s): %s", len(missing), ", ".join(missing))
        return OverlayValidation(valid=not missing, missing=missing, existing=existing)


def _number_word(question_index: int) -> str:
    if question_index <= len(NUMBER_WORDS):
        return NUMBER_WORDS[question_index - 1]
    return str(question_index)
