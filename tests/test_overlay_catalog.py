from __future__ import annotations

from pathlib import Path

import pytest

from quizreel.models import OverlayKey
from quizreel.overlays.catalog import OverlayCatalog, OverlayNotFoundError


def test_default_paths_use_bundled_filenames(tmp_path: Path) -> None:
    catalog = OverlayCatalog(tmp_path)

    assert catalog.overlay_path(OverlayKey.GAME_READY) == tmp_path / "game_get_ready.gif"
    assert catalog.overlay_path(OverlayKey.COUNTDOWN) == tmp_path / "question_countdown.gif"
    assert catalog.overlay_path(OverlayKey.QUESTION_READY, 3) == tmp_path / "question_three.gif"


def test_question_ready_requires_index(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="1-based question index"):
        OverlayCatalog(tmp_path).overlay_path(OverlayKey.QUESTION_READY)


def test_overrides_take_precedence(tmp_path: Path) -> None:
    catalog = OverlayCatalog(
        tmp_path,
        {
            "countdown": tmp_path / "custom_countdown.mp4",
            "question_ready": tmp_path / "ready.gif",
            "question_ready_2": tmp_path / "ready_two.gif",
        },
    )

    assert catalog.overlay_path(OverlayKey.COUNTDOWN) == tmp_path / "custom_countdown.mp4"
    assert catalog.overlay_path(OverlayKey.QUESTION_READY, 1) == tmp_path / "ready.gif"
    assert catalog.overlay_path(OverlayKey.QUESTION_READY, 2) == tmp_path / "ready_two.gif"


def test_resolve_returns_bytes(overlay_catalog: OverlayCatalog) -> None:
    assert overlay_catalog.resolve(OverlayKey.LEADERBOARD) == b"GIF89a"


def test_resolve_missing_or_empty_overlay_raises(tmp_path: Path) -> None:
    (tmp_path / "time_up_fetching.gif").write_bytes(b"")
    catalog = OverlayCatalog(tmp_path)

    with pytest.raises(OverlayNotFoundError, match="not readable"):
        catalog.resolve(OverlayKey.GAME_READY)
    with pytest.raises(OverlayNotFoundError, match="is empty"):
        catalog.resolve(OverlayKey.FETCHING)


def test_validate_overlay_files_reports_missing(overlay_catalog: OverlayCatalog) -> None:
    assert overlay_catalog.validate_overlay_files().valid is True

    (overlay_catalog.asset_dir / "question_five.gif").unlink()
    validation = overlay_catalog.validate_overlay_files()

    assert validation.valid is False
    assert validation.missing == [str(overlay_catalog.asset_dir / "question_five.gif")]
    assert len(validation.existing) == 10
