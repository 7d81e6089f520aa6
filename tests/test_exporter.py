from __future__ import annotations

import csv
import io
import json
import xml.etree.ElementTree as ET

import pytest

from quizreel.config import DurationSettings
from quizreel.export.exporter import (
    CSV_FIELDS,
    export_session,
    export_session_outputs,
    format_srt_time,
    format_vtt_time,
    load_session,
    render_session,
)
from quizreel.plan.timestamps import generate_session


@pytest.fixture
def session(make_clips):
    return generate_session(
        make_clips([8000, 12500]),
        DurationSettings(countdown_seconds=3),
        session_id="s1",
        video_id="v1",
        created_at="2026-01-01T00:00:00.000+00:00",
    )


def test_time_formats() -> None:
    assert format_srt_time(3_723_045) == "01:02:03,045"
    assert format_vtt_time(61_001) == "00:01:01.001"
    assert format_srt_time(0) == "00:00:00,000"


def test_srt_cues_are_numbered_and_labelled(session) -> None:
    rendered = render_session(session, "srt")

    cues = rendered.split("\n\n")
    assert len(cues) == len(session.events)
    assert cues[0] == "1\n00:00:00,000 --> 00:00:03,000\ngame_start"
    assert cues[1] == "2\n00:00:03,000 --> 00:00:05,000\nquestion_ready (Q1)"


def test_vtt_has_header_and_dot_separator(session) -> None:
    rendered = render_session(session, "vtt")

    assert rendered.startswith("WEBVTT\n\n00:00:00.000 --> 00:00:03.000\ngame_start\n")
    assert "00:00:05.000 --> 00:00:13.000\nquestion_start (Q1)" in rendered


def test_csv_columns_and_metadata(session) -> None:
    rows = list(csv.reader(io.StringIO(render_session(session, "csv"))))

    assert rows[0] == CSV_FIELDS
    assert len(rows) == len(session.events) + 1
    assert rows[1][:5] == ["s1_game_start", "game_start", "0", "3000", ""]
    assert json.loads(rows[1][5]) == {"total_questions": 2, "video_id": "v1"}


def test_xml_carries_session_and_events(session) -> None:
    root = ET.fromstring(render_session(session, "xml"))

    assert root.tag == "gameSession"
    assert root.findtext("sessionId") == "s1"
    assert root.findtext("totalDuration") == str(session.total_duration_ms)
    events = root.findall("events/event")
    assert len(events) == len(session.events)
    assert events[1].findtext("questionNumber") == "1"
    assert events[0].find("questionNumber") is None


def test_exports_are_byte_identical_across_runs(session) -> None:
    for fmt in ("json", "srt", "vtt", "csv", "xml"):
        assert render_session(session, fmt) == render_session(session, fmt)


def test_unsupported_format_is_rejected(session) -> None:
    with pytest.raises(ValueError, match="Unsupported export format"):
        render_session(session, "yaml")


def test_export_outputs_and_reload(session, tmp_path) -> None:
    exported = export_session_outputs(session, tmp_path / "out", basename="quiz", formats=["json", "srt"])

    assert set(exported) == {"json", "srt"}
    assert exported["srt"].name == "quiz.srt"
    assert load_session(exported["json"]) == session


def test_export_session_picks_format_from_suffix(session, tmp_path) -> None:
    path = export_session(session, tmp_path / "timeline.vtt")

    assert path.read_text(encoding="utf-8").startswith("WEBVTT")


def test_load_session_requires_events(tmp_path) -> None:
    path = tmp_path / "broken.json"
    path.write_text('{"session_id": "s1"}', encoding="utf-8")

    with pytest.raises(ValueError, match="events array"):
        load_session(path)
