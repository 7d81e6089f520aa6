from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, model_validator

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "QUIZREEL_"

AspectRatio = Literal["original", "16:9", "9:16", "4:5", "5:4", "1:1", "custom"]
ScaleMode = Literal["fit", "fill", "stretch"]
QualityTier = Literal["low", "medium", "high", "ultra"]
ResolutionTier = Literal["720p", "1080p", "4k"]


class PathSettings(BaseModel):
    output_dir: Path = Path("data/outputs")
    work_dir: Path | None = None


class DurationSettings(BaseModel):
    """Per-segment durations in seconds. Question clips use their probed length."""

    game_ready_seconds: float = Field(default=3.0, ge=0)
    question_ready_seconds: float = Field(default=2.0, ge=0)
    time_starts_seconds: float = Field(default=2.0, ge=0)
    countdown_seconds: int = Field(default=10, ge=0)
    fetching_seconds: float = Field(default=3.0, ge=0)
    leaderboard_seconds: float = Field(default=5.0, ge=0)


class AudioSettings(BaseModel):
    preserve_original_audio: bool = True
    original_volume: float = Field(default=1.0, ge=0, le=1)
    background_audio_path: Path | None = None
    background_volume: float = Field(default=0.1, ge=0, le=1)
    fade_in_seconds: float = Field(default=2.0, ge=0)
    fade_out_seconds: float = Field(default=2.0, ge=0)
    sample_rate: int = 48000
    channels: int = 2
    codec: str = "aac"
    bitrate: str = "128k"


class OutputSettings(BaseModel):
    aspect_ratio: AspectRatio = "original"
    custom_width: int | None = Field(default=None, gt=0)
    custom_height: int | None = Field(default=None, gt=0)
    scale_mode: ScaleMode = "fit"
    quality: QualityTier = "medium"
    frame_rate: Literal[24, 30, 60] = 30
    resolution: ResolutionTier = "1080p"
    pixel_format: str = "yuv420p"
    video_codec: str = "libx264"
    fallback_color: str = "blue"
    fallback_max_seconds: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def _require_custom_size(self) -> OutputSettings:
        if self.aspect_ratio == "custom" and (self.custom_width is None or self.custom_height is None):
            raise ValueError("custom aspect ratio requires custom_width and custom_height")
        return self


class CompilationSettings(BaseModel):
    durations: DurationSettings = Field(default_factory=DurationSettings)
    audio: AudioSettings = Field(default_factory=AudioSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)
    probe_workers: int = Field(default=4, ge=1)


class OverlaySettings(BaseModel):
    asset_dir: Path = Path("assets/overlays")
    overrides: dict[str, Path] = Field(default_factory=dict)


class UploadSettings(BaseModel):
    api_base_url: str = "http://localhost:8000"
    chunk_threshold_bytes: int = 50 * 1024 * 1024
    part_size_bytes: int = 50 * 1024 * 1024
    max_concurrent_parts: int = Field(default=3, ge=1)
    max_part_retries: int = Field(default=0, ge=0)
    retry_backoff_seconds: float = Field(default=1.0, ge=0)
    timeout_seconds: int = 120


class LoggingSettings(BaseModel):
    level: str = "INFO"
    engine_level: str = "INFO"


class Settings(BaseModel):
    paths: PathSettings = Field(default_factory=PathSettings)
    compile: CompilationSettings = Field(default_factory=CompilationSettings)
    overlays: OverlaySettings = Field(default_factory=OverlaySettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides."""

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config: dict[str, Any] = {}
    if resolved_path.exists():
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    current[final_key] = _coerce_value(raw_value, current[final_key])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
