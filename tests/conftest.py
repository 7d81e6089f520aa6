from __future__ import annotations

from pathlib import Path
from typing import Callable, Sequence

import pytest

from quizreel.models import ClipInput
from quizreel.overlays.catalog import DEFAULT_OVERLAY_FILES, NUMBER_WORDS, OverlayCatalog
from quizreel.render.engine import EngineError


class FakeEngine:
    """In-memory transcoding engine; ``exec`` writes a marker file for the last argument."""

    def __init__(self, fail_when: Callable[[list[str]], bool] | None = None) -> None:
        self.files: dict[str, bytes] = {}
        self.commands: list[list[str]] = []
        self.deleted: list[str] = []
        self.fail_when = fail_when
        self.closed = False

    def write_file(self, name: str, data: bytes) -> None:
        self.files[name] = data

    def exec(self, args: Sequence[str]) -> None:
        command = list(args)
        self.commands.append(command)
        if self.fail_when is not None and self.fail_when(command):
            raise EngineError(f"simulated failure for {command[-1]}")
        self.files[command[-1]] = f"rendered:{command[-1]}".encode("utf-8")

    def read_file(self, name: str) -> bytes:
        if name not in self.files:
            raise EngineError(f"Engine output not found: {name}")
        return self.files[name]

    def delete_file(self, name: str) -> None:
        self.deleted.append(name)
        self.files.pop(name, None)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def make_clips(tmp_path: Path) -> Callable[..., list[ClipInput]]:
    def _make(durations_ms: Sequence[int], *, width: int = 1280, height: int = 720) -> list[ClipInput]:
        clips = []
        for index, duration_ms in enumerate(durations_ms, start=1):
            path = tmp_path / f"question_{index}.mp4"
            path.write_bytes(f"clip-{index}".encode("utf-8"))
            clips.append(
                ClipInput(
                    clip_id=f"question-{index}",
                    path=path,
                    duration_ms=duration_ms,
                    width=width,
                    height=height,
                )
            )
        return clips

    return _make


@pytest.fixture
def overlay_catalog(tmp_path: Path) -> OverlayCatalog:
    asset_dir = tmp_path / "overlays"
    asset_dir.mkdir()
    for filename in DEFAULT_OVERLAY_FILES.values():
        (asset_dir / filename).write_bytes(b"GIF89a")
    for word in NUMBER_WORDS:
        (asset_dir / f"question_{word}.gif").write_bytes(b"GIF89a")
    return OverlayCatalog(asset_dir)


@pytest.fixture
def make_engine() -> Callable[..., FakeEngine]:
    return FakeEngine
