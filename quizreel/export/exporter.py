from __future__ import annotations

import csv
import io
import json
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Callable, Iterable, Literal

from quizreel.models import GameEvent, GameSession

ExportFormat = Literal["json", "srt", "vtt", "csv", "xml"]
SUPPORTED_FORMATS: tuple[ExportFormat, ...] = ("json", "srt", "vtt", "csv", "xml")
CSV_FIELDS = ["id", "type", "timestamp", "duration", "question_number", "metadata_json"]


def render_session(session: GameSession, fmt: str) -> str:
    """Render a game session in one export format.

    Output depends only on the session, so the same session always renders
    to the same text.
    """

    renderers: dict[str, Callable[[GameSession], str]] = {
        "json": _render_json,
        "srt": _render_srt,
        "vtt": _render_vtt,
        "csv": _render_csv,
        "xml": _render_xml,
    }
    normalized = fmt.lower().strip().lstrip(".")
    if normalized not in renderers:
        raise ValueError(f"Unsupported export format '{fmt}'. Expected one of: {', '.join(SUPPORTED_FORMATS)}.")
    return renderers[normalized](session)


def export_session(session: GameSession, output_path: str | Path) -> Path:
    """Write a session to ``output_path``; the file suffix picks the format."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fmt = path.suffix.lower().lstrip(".") or "json"
    path.write_text(render_session(session, fmt), encoding="utf-8")
    return path


def export_session_outputs(
    session: GameSession,
    output_dir: str | Path,
    *,
    basename: str | None = None,
    formats: Iterable[str] = SUPPORTED_FORMATS,
) -> dict[str, Path]:
    """Export a session in several formats side by side."""

    resolved_output_dir = Path(output_dir)
    resolved_output_dir.mkdir(parents=True, exist_ok=True)
    stem = basename or f"{session.video_id}_timeline"

    exported: dict[str, Path] = {}
    for fmt in formats:
        normalized = fmt.lower().strip()
        exported[normalized] = export_session(session, resolved_output_dir / f"{stem}.{normalized}")
    return exported


def load_session(path: str | Path) -> GameSession:
    """Load a session from the JSON export for downstream tooling."""

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Game session file must contain a JSON object.")
    return GameSession.from_dict(payload)


def format_srt_time(ms: int) -> str:
    return _format_clock(ms, ",")


def format_vtt_time(ms: int) -> str:
    return _format_clock(ms, ".")


def _render_json(session: GameSession) -> str:
    return json.dumps(session.to_dict(), indent=2, ensure_ascii=False) + "\n"


def _render_srt(session: GameSession) -> str:
    cues = [
        f"{index}\n{format_srt_time(event.timestamp_ms)} --> {format_srt_time(event.end_ms)}\n{_cue_label(event)}\n"
        for index, event in enumerate(session.events, start=1)
    ]
    return "\n".join(cues)


def _render_vtt(session: GameSession) -> str:
    cues = [
        f"{format_vtt_time(event.timestamp_ms)} --> {format_vtt_time(event.end_ms)}\n{_cue_label(event)}\n"
        for event in session.events
    ]
    return "WEBVTT\n\n" + "\n".join(cues)


def _render_csv(session: GameSession) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_FIELDS)
    for event in session.events:
        writer.writerow(
            [
                event.id,
                event.kind.value,
                event.timestamp_ms,
                event.duration_ms,
                event.question_number if event.question_number is not None else "",
                _metadata_json(event),
            ]
        )
    return buffer.getvalue()


def _render_xml(session: GameSession) -> str:
    root = ET.Element("gameSession")
    ET.SubElement(root, "sessionId").text = session.session_id
    ET.SubElement(root, "videoId").text = session.video_id
    ET.SubElement(root, "totalDuration").text = str(session.total_duration_ms)
    ET.SubElement(root, "questionCount").text = str(session.question_count)
    ET.SubElement(root, "createdAt").text = session.created_at
    ET.SubElement(root, "formatVersion").text = session.format_version

    events = ET.SubElement(root, "events")
    for event in session.events:
        node = ET.SubElement(events, "event")
        ET.SubElement(node, "id").text = event.id
        ET.SubElement(node, "type").text = event.kind.value
        ET.SubElement(node, "timestamp").text = str(event.timestamp_ms)
        ET.SubElement(node, "duration").text = str(event.duration_ms)
        if event.question_number is not None:
            ET.SubElement(node, "questionNumber").text = str(event.question_number)
        if event.metadata:
            ET.SubElement(node, "metadata").text = _metadata_json(event)

    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n'


def _cue_label(event: GameEvent) -> str:
    if event.question_number:
        return f"{event.kind.value} (Q{event.question_number})"
    return event.kind.value


def _metadata_json(event: GameEvent) -> str:
    return json.dumps(event.metadata, sort_keys=True, separators=(",", ":"))


def _format_clock(ms: int, separator: str) -> str:
    total_seconds, milliseconds = divmod(int(ms), 1000)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}{separator}{milliseconds:03d}"
