from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict
from pathlib import Path
from typing import Callable, TypeVar

import typer

from quizreel.config import Settings, load_settings
from quizreel.export.exporter import SUPPORTED_FORMATS, export_session_outputs, load_session, render_session
from quizreel.ingest.probe import probe_clips
from quizreel.logging_config import configure_logging
from quizreel.models import CompilationProgress, JobState
from quizreel.orchestrator import CompilationJob
from quizreel.overlays.catalog import OverlayCatalog
from quizreel.plan.sequence_planner import plan_sequence, segment_display_name
from quizreel.plan.timestamps import generate_session, join_context
from quizreel.upload.coordinator import ChunkedUploadCoordinator
from quizreel.upload.http_transport import HttpUploadTransport

app = typer.Typer(help="Quiz-show video compiler and production timeline tools.")
config_app = typer.Typer(help="Configuration commands.")
ingest_app = typer.Typer(help="Question clip inspection commands.")
timeline_app = typer.Typer(help="Sequence planning and timeline export commands.")
overlays_app = typer.Typer(help="Overlay asset commands.")
compile_app = typer.Typer(help="Video compilation commands.")
upload_app = typer.Typer(help="Upload commands.")

app.add_typer(config_app, name="config")
app.add_typer(ingest_app, name="ingest")
app.add_typer(timeline_app, name="timeline")
app.add_typer(overlays_app, name="overlays")
app.add_typer(compile_app, name="compile")
app.add_typer(upload_app, name="upload")

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = time.perf_counter()
    try:
        result = work()
    except Exception:
        elapsed = time.perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = time.perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _fail(exc: Exception, context: str) -> typer.Exit:
    logger.error("%s failed: %s", context, exc)
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


def _default_session_id() -> str:
    return f"session_{int(time.time() * 1000)}"


def _catalog(settings: Settings) -> OverlayCatalog:
    return OverlayCatalog(settings.overlays.asset_dir, settings.overlays.overrides)


@config_app.command("show")
def show_config(
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="QUIZREEL_CONFIG",
        help="Path to YAML configuration file.",
    )
) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@ingest_app.command("probe")
def probe(
    clip_paths: list[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Question clips to probe."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="QUIZREEL_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Probe question clips and print their durations and dimensions."""

    settings = _bootstrap(config_path)
    try:
        clips = probe_clips(clip_paths, max_workers=settings.compile.probe_workers)
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc, "Probe") from exc

    logger.info("Probed %d clips", len(clips))
    typer.echo(
        json.dumps(
            [
                {
                    "clip_id": clip.clip_id,
                    "path": str(clip.path),
                    "duration_ms": clip.duration_ms,
                    "width": clip.width,
                    "height": clip.height,
                    "has_audio": clip.has_audio,
                }
                for clip in clips
            ],
            indent=2,
        )
    )


@timeline_app.command("plan")
def plan_timeline(
    clip_paths: list[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Question clips in play order."),
    session_id: str | None = typer.Option(None, help="Session id. Defaults to session_<epoch ms>."),
    video_id: str = typer.Option("quiz_video", help="Video id recorded in the timeline."),
    formats: list[str] = typer.Option(list(SUPPORTED_FORMATS), "--format", "-f", help="Export formats."),
    output_dir: Path | None = typer.Option(None, help="Export directory. Defaults to paths.output_dir."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="QUIZREEL_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Plan the segment sequence and export its timeline without rendering video."""

    settings = _bootstrap(config_path)
    durations = settings.compile.durations
    total_steps = 3

    try:
        clips = _run_with_progress(
            1,
            total_steps,
            "Probe question clips",
            lambda: probe_clips(clip_paths, max_workers=settings.compile.probe_workers),
        )
        plan, session = _run_with_progress(
            2,
            total_steps,
            "Plan sequence",
            lambda: (
                plan_sequence(clips, durations),
                generate_session(clips, durations, session_id=session_id or _default_session_id(), video_id=video_id),
            ),
        )
        exported = _run_with_progress(
            3,
            total_steps,
            "Export timeline",
            lambda: export_session_outputs(
                session,
                output_dir or settings.paths.output_dir,
                basename=f"{video_id}_timeline",
                formats=formats,
            ),
        )
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc, "Timeline planning") from exc

    typer.echo(
        json.dumps(
            {
                "status": "ok",
                "session_id": session.session_id,
                "total_duration_ms": plan.total_duration_ms,
                "event_count": len(session.events),
                "segments": [
                    {
                        "index": segment.index,
                        "name": segment_display_name(segment),
                        "start_ms": segment.start_ms,
                        "duration_ms": segment.duration_ms,
                    }
                    for segment in plan.segments
                ],
                "outputs": {k: str(v) for k, v in exported.items()},
            },
            indent=2,
        )
    )


@timeline_app.command("export")
def export_timeline(
    session_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Session JSON export."),
    fmt: str = typer.Option("srt", "--format", "-f", help=f"One of: {', '.join(SUPPORTED_FORMATS)}."),
    output_path: Path | None = typer.Option(None, "--output", "-o", help="Write to file instead of stdout."),
) -> None:
    """Convert a session JSON export into another timeline format."""

    try:
        rendered = render_session(load_session(session_path), fmt)
    except (KeyError, ValueError) as exc:
        raise _fail(exc, "Timeline export") from exc

    if output_path is None:
        typer.echo(rendered, nl=False)
        return
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(rendered, encoding="utf-8")
    typer.echo(str(output_path))


@timeline_app.command("join")
def join_timeline(
    session_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Session JSON export."),
    join_time_ms: int = typer.Option(..., help="Wall-clock join time in epoch milliseconds."),
    video_start_time_ms: int = typer.Option(..., help="Wall-clock video start in epoch milliseconds."),
) -> None:
    """Show which event a player joining at the given time lands in."""

    try:
        context = join_context(load_session(session_path), join_time_ms, video_start_time_ms)
    except (KeyError, ValueError) as exc:
        raise _fail(exc, "Join lookup") from exc

    typer.echo(
        json.dumps(
            {
                "current_event": context.current_event.to_dict() if context.current_event else None,
                "next_event": context.next_event.to_dict() if context.next_event else None,
                "time_in_current_event_ms": context.time_in_current_event_ms,
                "should_show_question": context.should_show_question,
                "question_number": context.question_number,
            },
            indent=2,
        )
    )


@overlays_app.command("check")
def check_overlays(
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="QUIZREEL_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Report missing overlay assets; exits 1 when any are missing."""

    settings = _bootstrap(config_path)
    validation = _catalog(settings).validate_overlay_files()
    typer.echo(json.dumps(asdict(validation), indent=2))
    if not validation.valid:
        raise typer.Exit(code=1)


@compile_app.command("run")
def compile_video(
    clip_paths: list[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Question clips in play order."),
    output_path: Path | None = typer.Option(None, "--output", "-o", help="Output video path."),
    session_id: str | None = typer.Option(None, help="Session id. Defaults to session_<epoch ms>."),
    video_id: str | None = typer.Option(None, help="Video id. Defaults to the output filename stem."),
    background_audio: Path | None = typer.Option(
        None, exists=True, dir_okay=False, help="Optional background music track."
    ),
    formats: list[str] = typer.Option(list(SUPPORTED_FORMATS), "--format", "-f", help="Timeline export formats."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="QUIZREEL_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Compile question clips and overlays into one video plus its timeline."""

    settings = _bootstrap(config_path)
    compilation = settings.compile
    if background_audio is not None:
        compilation = compilation.model_copy(
            update={"audio": compilation.audio.model_copy(update={"background_audio_path": background_audio})}
        )

    resolved_output = output_path or Path(settings.paths.output_dir) / "quiz_compilation.mp4"
    resolved_video_id = video_id or resolved_output.stem
    total_steps = 3

    def _echo_progress(progress: CompilationProgress) -> None:
        if progress.stage is JobState.MATERIALIZING:
            typer.echo(
                f"      {progress.percent:5.1f}% [{progress.current_segment_index}/{progress.total_segments}] "
                f"{progress.message}",
                err=True,
            )

    job = CompilationJob(
        compilation,
        _catalog(settings),
        work_dir=settings.paths.work_dir,
        progress=_echo_progress,
    )

    try:
        result = _run_with_progress(
            1,
            total_steps,
            "Compile video",
            lambda: job.run(
                clip_paths,
                session_id=session_id or _default_session_id(),
                video_id=resolved_video_id,
            ),
        )
        _run_with_progress(2, total_steps, "Write output video", lambda: _write_bytes(resolved_output, result.output))
        exported = _run_with_progress(
            3,
            total_steps,
            "Export timeline",
            lambda: export_session_outputs(
                result.session,
                resolved_output.parent,
                basename=f"{resolved_video_id}_timeline",
                formats=formats,
            ),
        )
    except (RuntimeError, ValueError, OSError) as exc:
        raise _fail(exc, "Compilation") from exc

    typer.echo(
        json.dumps(
            {
                "status": "ok",
                "output_path": str(resolved_output),
                "size_bytes": len(result.output),
                "session_id": result.session.session_id,
                "video_id": result.session.video_id,
                "total_duration_ms": result.plan.total_duration_ms,
                "fallback_segments": [failure.segment_index for failure in result.failures],
                "timeline": {k: str(v) for k, v in exported.items()},
            },
            indent=2,
        )
    )


@upload_app.command("file")
def upload_file(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to upload."),
    api_base_url: str | None = typer.Option(None, help="Upload API base URL. Defaults to upload.api_base_url."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="QUIZREEL_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Upload a compiled video, in parallel parts when it is large."""

    settings = _bootstrap(config_path)
    upload = settings.upload
    coordinator = ChunkedUploadCoordinator(
        HttpUploadTransport(api_base_url or upload.api_base_url, timeout_seconds=upload.timeout_seconds),
        threshold_bytes=upload.chunk_threshold_bytes,
        part_size_bytes=upload.part_size_bytes,
        max_workers=upload.max_concurrent_parts,
        max_part_retries=upload.max_part_retries,
        retry_backoff_seconds=upload.retry_backoff_seconds,
    )

    try:
        result = _run_with_progress(1, 1, "Upload file", lambda: coordinator.upload(file_path))
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc, "Upload") from exc

    typer.echo(
        json.dumps(
            {
                "status": "ok",
                "asset_id": result.asset_id,
                "upload_id": result.upload_id,
                "size_bytes": result.size_bytes,
                "part_count": len(result.parts) if result.multipart else 1,
            },
            indent=2,
        )
    )


def _write_bytes(path: Path, data: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


if __name__ == "__main__":
    app()
