from __future__ import annotations

import pytest

import quizreel.orchestrator as orchestrator
from quizreel.config import AudioSettings, CompilationSettings
from quizreel.models import JobState, SegmentKind
from quizreel.orchestrator import (
    CancellationToken,
    CompilationCancelled,
    CompilationError,
    CompilationJob,
)
from quizreel.plan.sequence_planner import PlanValidationError

CREATED_AT = "2026-01-01T00:00:00.000+00:00"


def _run(job: CompilationJob, clips):
    return job.run(clips=clips, session_id="s1", video_id="v1", created_at=CREATED_AT)


def test_successful_job_produces_output_and_matching_timeline(make_clips, overlay_catalog, fake_engine) -> None:
    updates = []
    job = CompilationJob(
        CompilationSettings(),
        overlay_catalog,
        engine_factory=lambda: fake_engine,
        progress=updates.append,
    )

    result = _run(job, make_clips([8000, 12500]))

    assert job.state is JobState.COMPLETE
    assert result.state is JobState.COMPLETE
    assert result.output == b"rendered:final_output.mp4"
    assert result.plan.total_duration_ms == 67500
    assert result.session.total_duration_ms == 67500
    assert result.failures == []
    assert [update.stage for update in updates if update.stage is not JobState.MATERIALIZING] == [
        JobState.PROBING,
        JobState.PLANNING,
        JobState.CONCATENATING,
        JobState.FINALIZING,
        JobState.COMPLETE,
    ]
    materializing = [update for update in updates if update.stage is JobState.MATERIALIZING]
    assert [update.current_segment_index for update in materializing] == list(range(1, 14))
    assert materializing[0].segment_name == "Game Get Ready"
    assert updates[-1].percent == 100
    assert fake_engine.files == {}
    assert fake_engine.closed is True


def test_segment_failures_never_block_completion(make_clips, overlay_catalog, make_engine) -> None:
    engine = make_engine(fail_when=lambda args: "-stream_loop" in args)
    job = CompilationJob(CompilationSettings(), overlay_catalog, engine_factory=lambda: engine)

    result = _run(job, make_clips([8000, 12500]))

    assert job.state is JobState.COMPLETE
    overlay_failures = [failure for failure in result.failures if failure.kind is not SegmentKind.QUESTION]
    assert len(overlay_failures) == 11
    manifest_entries = [
        command for command in engine.commands if command[:4] == ["-f", "concat", "-safe", "0"]
    ]
    assert len(manifest_entries) == 1


def test_validation_error_happens_before_any_engine_call(make_clips, overlay_catalog) -> None:
    created = []
    updates = []
    job = CompilationJob(
        CompilationSettings(),
        overlay_catalog,
        engine_factory=lambda: created.append("engine"),
        progress=updates.append,
    )

    with pytest.raises(PlanValidationError, match="question count out of range: got 1"):
        _run(job, make_clips([8000]))

    assert created == []
    assert job.state is JobState.ERROR
    assert updates[-1].stage is JobState.ERROR


def test_cancellation_between_segments_cleans_up(make_clips, overlay_catalog, fake_engine) -> None:
    token = CancellationToken()

    def _progress(update) -> None:
        if update.stage is JobState.MATERIALIZING and update.current_segment_index == 3:
            token.cancel()

    job = CompilationJob(
        CompilationSettings(),
        overlay_catalog,
        engine_factory=lambda: fake_engine,
        progress=_progress,
        cancel_token=token,
    )

    with pytest.raises(CompilationCancelled):
        _run(job, make_clips([8000, 12500]))

    assert job.state is JobState.CANCELLED
    assert len([command for command in fake_engine.commands if command[-1].startswith("segment_")]) == 3
    assert fake_engine.files == {}
    assert fake_engine.closed is True


def test_cancel_before_start_stops_at_probing(make_clips, overlay_catalog, fake_engine) -> None:
    token = CancellationToken()
    token.cancel()
    job = CompilationJob(
        CompilationSettings(),
        overlay_catalog,
        engine_factory=lambda: fake_engine,
        cancel_token=token,
    )

    with pytest.raises(CompilationCancelled, match="idle"):
        _run(job, make_clips([8000, 12500]))
    assert fake_engine.commands == []


def test_fatal_concatenation_failure_is_wrapped_with_state(make_clips, overlay_catalog, make_engine) -> None:
    engine = make_engine(fail_when=lambda args: "concat" in args)
    job = CompilationJob(CompilationSettings(), overlay_catalog, engine_factory=lambda: engine)

    with pytest.raises(CompilationError) as excinfo:
        _run(job, make_clips([8000, 12500]))

    assert excinfo.value.state is JobState.CONCATENATING
    assert excinfo.value.__cause__ is not None
    assert job.state is JobState.ERROR
    assert engine.files == {}
    assert engine.closed is True


def test_fallback_failure_ends_job_in_error(make_clips, overlay_catalog, make_engine) -> None:
    engine = make_engine(fail_when=lambda args: True)
    job = CompilationJob(CompilationSettings(), overlay_catalog, engine_factory=lambda: engine)

    with pytest.raises(CompilationError, match="fallback both failed") as excinfo:
        _run(job, make_clips([8000, 12500]))

    assert excinfo.value.state is JobState.MATERIALIZING
    assert engine.closed is True


def test_background_mix_defers_original_volume(make_clips, overlay_catalog, fake_engine, tmp_path) -> None:
    track = tmp_path / "music.mp3"
    track.write_bytes(b"ID3")
    settings = CompilationSettings(audio=AudioSettings(original_volume=0.5, background_audio_path=track))
    job = CompilationJob(settings, overlay_catalog, engine_factory=lambda: fake_engine)

    _run(job, make_clips([8000, 12500]))

    question_commands = [command for command in fake_engine.commands if command[:1] == ["-i"]]
    assert question_commands
    assert all("volume=" not in " ".join(command) for command in question_commands)
    mix_command = fake_engine.commands[-1]
    assert "[0:a]volume=0.5[orig]" in mix_command[mix_command.index("-filter_complex") + 1]


def test_value_error_during_probing_ends_job_in_error(tmp_path, overlay_catalog, fake_engine, monkeypatch) -> None:
    paths = []
    for index in (1, 2):
        path = tmp_path / f"question_{index}.mp4"
        path.write_bytes(b"data")
        paths.append(path)

    def _unreadable(*args, **kwargs):
        raise ValueError("could not convert string to float: '12,5'")

    monkeypatch.setattr(orchestrator, "probe_clips", _unreadable)
    job = CompilationJob(CompilationSettings(), overlay_catalog, engine_factory=lambda: fake_engine)

    with pytest.raises(CompilationError, match="12,5") as excinfo:
        job.run(paths, session_id="s1", video_id="v1", created_at=CREATED_AT)

    assert excinfo.value.state is JobState.PROBING
    assert isinstance(excinfo.value.__cause__, ValueError)
    assert job.state is JobState.ERROR
