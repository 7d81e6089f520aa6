from __future__ import annotations

from pathlib import Path

import pytest

from quizreel.config import AudioSettings, DurationSettings, OutputSettings
from quizreel.models import MaterializedSegment
from quizreel.plan.sequence_planner import plan_sequence, renderable_segments
from quizreel.render.commands import resolve_output_target
from quizreel.render.concatenator import (
    MANIFEST_NAME,
    OUTPUT_NAME,
    ConcatenationError,
    concatenate_segments,
    load_background_audio,
)


def _materialized(make_clips) -> tuple[list[MaterializedSegment], int]:
    plan = plan_sequence(make_clips([5000, 6000]), DurationSettings())
    segments = [
        MaterializedSegment(segment=segment, filename=f"segment_{segment.index:03d}.mp4", size_bytes=1)
        for segment in renderable_segments(plan)
    ]
    return segments, plan.total_duration_ms


def _concat(engine, segments, total_ms, *, audio: AudioSettings | None = None, background: bytes | None = None):
    audio = audio or AudioSettings()
    target = resolve_output_target(OutputSettings(), audio)
    return concatenate_segments(
        engine,
        segments,
        target,
        audio,
        total_duration_ms=total_ms,
        background_audio=background,
    )


def test_manifest_lists_segments_in_plan_order(make_clips, fake_engine) -> None:
    segments, total_ms = _materialized(make_clips)

    output = _concat(fake_engine, list(reversed(segments)), total_ms)

    manifest = fake_engine.files[MANIFEST_NAME].decode("utf-8").splitlines()
    assert manifest == [f"file 'segment_{index:03d}.mp4'" for index in range(len(segments))]
    assert output == f"rendered:{OUTPUT_NAME}".encode("utf-8")
    assert fake_engine.commands[0][fake_engine.commands[0].index("-c:v") + 1] == "copy"


def test_background_mix_is_used_when_available(make_clips, fake_engine) -> None:
    segments, total_ms = _materialized(make_clips)

    _concat(fake_engine, segments, total_ms, background=b"ID3")

    assert len(fake_engine.commands) == 1
    assert "-filter_complex" in fake_engine.commands[0]
    assert "background_audio.mp3" in fake_engine.deleted


def test_background_mix_failure_retries_plain_concat(make_clips, make_engine) -> None:
    engine = make_engine(fail_when=lambda args: "-filter_complex" in args)
    segments, total_ms = _materialized(make_clips)

    output = _concat(engine, segments, total_ms, audio=AudioSettings(original_volume=0.6), background=b"ID3")

    assert output
    assert len(engine.commands) == 2
    plain = engine.commands[1]
    assert "-filter_complex" not in plain
    assert plain[plain.index("-af") + 1] == "volume=0.6"


def test_both_attempts_failing_raises(make_clips, make_engine) -> None:
    engine = make_engine(fail_when=lambda args: True)
    segments, total_ms = _materialized(make_clips)

    with pytest.raises(ConcatenationError, match="Concatenation failed"):
        _concat(engine, segments, total_ms, background=b"ID3")
    assert len(engine.commands) == 2


def test_nothing_to_concatenate_raises(fake_engine) -> None:
    with pytest.raises(ConcatenationError, match="no materialized segments"):
        _concat(fake_engine, [], 0)


def test_load_background_audio_tolerates_missing_file(tmp_path: Path) -> None:
    track = tmp_path / "music.mp3"
    track.write_bytes(b"ID3")

    assert load_background_audio(None) is None
    assert load_background_audio(tmp_path / "absent.mp3") is None
    assert load_background_audio(track) == b"ID3"
