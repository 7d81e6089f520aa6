from __future__ import annotations

import json
import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Sequence

from quizreel.models import ClipInput, seconds_to_ms

logger = logging.getLogger(__name__)

SHARED_LIBRARY_MARKERS = ("error while loading shared libraries", "cannot open shared object file")


def probe_media(video_path: str | Path) -> dict[str, Any]:
    """Probe media metadata via ffprobe and return a normalized summary."""

    source_path = Path(video_path).expanduser().resolve()
    if not source_path.exists():
        raise FileNotFoundError(f"Video file not found: {source_path}")

    ffprobe_payload = _run_ffprobe(source_path)
    try:
        metadata = _normalize_probe_payload(source_path, ffprobe_payload)
    except ValueError as exc:
        raise RuntimeError(f"ffprobe returned unreadable metadata for {source_path}: {exc}") from exc
    if metadata["duration_seconds"] is None:
        metadata["duration_seconds"] = _estimate_duration_with_opencv(source_path)
        metadata["duration_source"] = "opencv"
    return metadata


def probe_clip(video_path: str | Path, clip_id: str | None = None) -> ClipInput:
    """Probe one question clip and return it with its duration in milliseconds."""

    metadata = probe_media(video_path)
    duration_seconds = metadata["duration_seconds"]
    if duration_seconds is None or duration_seconds <= 0:
        raise RuntimeError(f"Could not determine a playable duration for {metadata['path']}.")

    video_stream = metadata["primary_video_stream"] or {}
    return ClipInput(
        clip_id=clip_id or Path(metadata["path"]).stem,
        path=Path(metadata["path"]),
        duration_ms=seconds_to_ms(duration_seconds),
        width=video_stream.get("width"),
        height=video_stream.get("height"),
        has_audio=metadata["audio_stream_count"] > 0,
    )


def probe_clips(
    video_paths: Sequence[str | Path],
    *,
    clip_ids: Sequence[str] | None = None,
    max_workers: int = 4,
) -> list[ClipInput]:
    """Probe clips concurrently; the result keeps the input order."""

    if clip_ids is not None and len(clip_ids) != len(video_paths):
        raise ValueError("clip_ids must match the number of video paths.")

    resolved_ids = list(clip_ids) if clip_ids is not None else [
        f"question-{index}" for index in range(1, len(video_paths) + 1)
    ]
    if not video_paths:
        return []

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(video_paths)))) as executor:
        futures = [
            executor.submit(probe_clip, path, clip_id)
            for path, clip_id in zip(video_paths, resolved_ids)
        ]
        clips = [future.result() for future in futures]

    for clip in clips:
        logger.debug("Probed %s: %d ms (%sx%s, audio=%s)", clip.path, clip.duration_ms, clip.width, clip.height, clip.has_audio)
    return clips


def _run_ffprobe(video_path: Path) -> dict[str, Any]:
    command = [
        "ffprobe",
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(video_path),
    ]

    try:
        completed = subprocess.run(
            command,
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as exc:
        raise RuntimeError(
            "ffprobe executable was not found. Install FFmpeg so ffprobe is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        if any(marker in stderr for marker in SHARED_LIBRARY_MARKERS):
            raise RuntimeError(
                "ffprobe is installed but failed to start because required shared libraries are missing. "
                f"Reinstall FFmpeg. ffprobe stderr: {stderr}"
            ) from exc
        details = f" ffprobe stderr: {stderr}" if stderr else ""
        raise RuntimeError(
            f"ffprobe failed while probing media file: {video_path}.{details}"
        ) from exc

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise RuntimeError("ffprobe returned invalid JSON output.") from exc


def _normalize_probe_payload(video_path: Path, payload: dict[str, Any]) -> dict[str, Any]:
    stream_entries = payload.get("streams", [])
    format_entry = payload.get("format", {})

    streams = [_normalize_stream(stream) for stream in stream_entries]
    video_streams = [stream for stream in streams if stream["codec_type"] == "video"]
    audio_streams = [stream for stream in streams if stream["codec_type"] == "audio"]

    duration_seconds = _to_float(format_entry.get("duration"))
    duration_source = "format"
    if duration_seconds is None:
        stream_durations = [stream["duration_seconds"] for stream in video_streams if stream["duration_seconds"]]
        if stream_durations:
            duration_seconds = max(stream_durations)
            duration_source = "stream"

    return {
        "path": str(video_path),
        "format_name": format_entry.get("format_name"),
        "duration_seconds": duration_seconds,
        "duration_source": duration_source,
        "size_bytes": _to_int(format_entry.get("size")),
        "streams": streams,
        "primary_video_stream": video_streams[0] if video_streams else None,
        "audio_stream_count": len(audio_streams),
        "video_stream_count": len(video_streams),
    }


def _normalize_stream(stream: dict[str, Any]) -> dict[str, Any]:
    return {
        "index": stream.get("index"),
        "codec_type": stream.get("codec_type"),
        "codec_name": stream.get("codec_name"),
        "sample_rate": _to_int(stream.get("sample_rate")),
        "channels": _to_int(stream.get("channels")),
        "width": _to_int(stream.get("width")),
        "height": _to_int(stream.get("height")),
        "avg_frame_rate": stream.get("avg_frame_rate"),
        "duration_seconds": _to_float(stream.get("duration")),
    }


def _estimate_duration_with_opencv(video_path: Path) -> float | None:
    # Browser-recorded WebM files frequently carry no container duration.
    import cv2

    capture = cv2.VideoCapture(str(video_path))
    if not capture.isOpened():
        return None
    try:
        fps = float(capture.get(cv2.CAP_PROP_FPS) or 0.0)
        frame_count = float(capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0)
    finally:
        capture.release()

    if fps <= 0 or frame_count <= 0:
        return None
    return frame_count / fps


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    return float(raw_value)


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)
