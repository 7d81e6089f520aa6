from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from quizreel.config import AudioSettings, OutputSettings, ScaleMode
from quizreel.models import ClipInput

RESOLUTION_DIMENSIONS: dict[str, tuple[int, int]] = {
    "720p": (1280, 720),
    "1080p": (1920, 1080),
    "4k": (3840, 2160),
}
# width:height ratios applied against the resolution tier's height
ASPECT_RATIOS: dict[str, tuple[int, int]] = {
    "9:16": (9, 16),
    "4:5": (4, 5),
    "5:4": (5, 4),
    "1:1": (1, 1),
}
QUALITY_PRESETS: dict[str, tuple[str, int]] = {
    "low": ("ultrafast", 32),
    "medium": ("ultrafast", 28),
    "high": ("veryfast", 23),
    "ultra": ("medium", 18),
}
VIDEO_TRACK_TIMESCALE = "90000"


@dataclass(slots=True, frozen=True)
class OutputTarget:
    """Codec parameters every materialized segment must share."""

    width: int
    height: int
    frame_rate: int
    pixel_format: str
    video_codec: str
    preset: str
    crf: int
    scale_mode: ScaleMode
    sample_rate: int
    channels: int
    audio_codec: str
    audio_bitrate: str

    @property
    def channel_layout(self) -> str:
        return {1: "mono", 2: "stereo"}.get(self.channels, f"{self.channels}c")


def resolve_output_target(
    output: OutputSettings,
    audio: AudioSettings,
    clips: Sequence[ClipInput] = (),
) -> OutputTarget:
    width, height = resolve_output_dimensions(output, clips)
    preset, crf = QUALITY_PRESETS[output.quality]
    return OutputTarget(
        width=width,
        height=height,
        frame_rate=output.frame_rate,
        pixel_format=output.pixel_format,
        video_codec=output.video_codec,
        preset=preset,
        crf=crf,
        scale_mode=output.scale_mode,
        sample_rate=audio.sample_rate,
        channels=audio.channels,
        audio_codec=audio.codec,
        audio_bitrate=audio.bitrate,
    )


def resolve_output_dimensions(output: OutputSettings, clips: Sequence[ClipInput] = ()) -> tuple[int, int]:
    """Pick the output canvas from the aspect-ratio mode and resolution tier."""

    if output.aspect_ratio == "custom" and output.custom_width and output.custom_height:
        return _even(output.custom_width), _even(output.custom_height)

    if output.aspect_ratio == "original":
        for clip in clips:
            if clip.width and clip.height:
                return _even(clip.width), _even(clip.height)

    base_width, base_height = RESOLUTION_DIMENSIONS[output.resolution]
    ratio = ASPECT_RATIOS.get(output.aspect_ratio)
    if ratio is None:
        return base_width, base_height

    ratio_width, ratio_height = ratio
    return _even(base_height * ratio_width / ratio_height), base_height


def scale_filter(target: OutputTarget) -> str:
    width, height = target.width, target.height
    if target.scale_mode == "fill":
        return (
            f"scale={width}:{height}:force_original_aspect_ratio=increase,"
            f"crop={width}:{height},setsar=1"
        )
    if target.scale_mode == "stretch":
        return f"scale={width}:{height},setsar=1"
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2:black,setsar=1"
    )


def silent_audio_input(target: OutputTarget) -> list[str]:
    return ["-f", "lavfi", "-i", f"anullsrc=channel_layout={target.channel_layout}:sample_rate={target.sample_rate}"]


def video_codec_args(target: OutputTarget) -> list[str]:
    return [
        "-c:v", target.video_codec,
        "-preset", target.preset,
        "-crf", str(target.crf),
        "-pix_fmt", target.pixel_format,
        "-r", str(target.frame_rate),
        "-video_track_timescale", VIDEO_TRACK_TIMESCALE,
    ]


def audio_codec_args(target: OutputTarget) -> list[str]:
    return [
        "-c:a", target.audio_codec,
        "-b:a", target.audio_bitrate,
        "-ar", str(target.sample_rate),
        "-ac", str(target.channels),
    ]


def build_question_args(
    input_name: str,
    output_name: str,
    target: OutputTarget,
    duration_ms: int,
    *,
    keep_audio: bool,
    volume: float | None = None,
) -> list[str]:
    """Normalize a question clip and hold both streams to ``duration_ms``.

    Short streams are padded (last frame cloned, silence appended) so neither
    can end the segment early and shift every later segment.
    """

    args = ["-i", input_name]
    if keep_audio:
        args += ["-map", "0:v:0", "-map", "0:a:0"]
        audio_chain = ["apad"]
        if volume is not None and volume != 1.0:
            audio_chain.insert(0, f"volume={volume:g}")
        args += ["-af", ",".join(audio_chain)]
    else:
        args += silent_audio_input(target)
        args += ["-map", "0:v:0", "-map", "1:a:0"]

    args += ["-vf", f"{scale_filter(target)},tpad=stop_mode=clone:stop=-1"]
    args += ["-t", format_seconds(duration_ms)]
    args += video_codec_args(target)
    args += audio_codec_args(target)
    args += ["-avoid_negative_ts", "make_zero", "-y", output_name]
    return args


def build_overlay_args(input_name: str, output_name: str, target: OutputTarget, duration_ms: int) -> list[str]:
    """Loop an overlay clip and cut it to exactly ``duration_ms`` with a silent track."""

    args = ["-stream_loop", "-1", "-i", input_name]
    args += silent_audio_input(target)
    args += ["-map", "0:v:0", "-map", "1:a:0"]
    args += ["-vf", scale_filter(target)]
    args += ["-t", format_seconds(duration_ms)]
    args += video_codec_args(target)
    args += audio_codec_args(target)
    args += ["-avoid_negative_ts", "make_zero", "-y", output_name]
    return args


def build_fallback_args(output_name: str, target: OutputTarget, duration_ms: int, color: str) -> list[str]:
    duration = format_seconds(duration_ms)
    args = [
        "-f", "lavfi",
        "-i", f"color=c={color}:s={target.width}x{target.height}:d={duration}:r={target.frame_rate}",
    ]
    args += silent_audio_input(target)
    args += ["-map", "0:v:0", "-map", "1:a:0", "-t", duration]
    args += video_codec_args(target)
    args += audio_codec_args(target)
    args += ["-shortest", "-y", output_name]
    return args


def build_concat_manifest(filenames: Sequence[str]) -> str:
    lines = []
    for name in filenames:
        escaped = name.replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines) + "\n"


def build_concat_args(
    manifest_name: str,
    output_name: str,
    target: OutputTarget,
    *,
    original_volume: float | None = None,
) -> list[str]:
    args = ["-f", "concat", "-safe", "0", "-i", manifest_name, "-map", "0:v", "-map", "0:a", "-c:v", "copy"]
    if original_volume is not None and original_volume != 1.0:
        args += ["-af", f"volume={original_volume:g}"]
    args += audio_codec_args(target)
    args += ["-movflags", "+faststart", "-y", output_name]
    return args


def build_background_mix_filter(
    *,
    preserve_original: bool,
    original_volume: float,
    background_volume: float,
    fade_in_seconds: float,
    fade_out_seconds: float,
    total_duration_ms: int,
) -> str:
    """Weighted two-input mix; the video's own audio sets the output length."""

    background_chain = [f"volume={background_volume:g}"]
    if fade_in_seconds > 0:
        background_chain.append(f"afade=t=in:st=0:d={fade_in_seconds:g}")
    if fade_out_seconds > 0:
        fade_start = max(total_duration_ms / 1000 - fade_out_seconds, 0.0)
        background_chain.append(f"afade=t=out:st={fade_start:.3f}:d={fade_out_seconds:g}")

    if not preserve_original:
        background_chain.append("apad")
        return f"[1:a]{','.join(background_chain)}[mixed]"

    return (
        f"[0:a]volume={original_volume:g}[orig];"
        f"[1:a]{','.join(background_chain)}[bg];"
        "[orig][bg]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[mixed]"
    )


def build_concat_with_background_args(
    manifest_name: str,
    background_name: str,
    output_name: str,
    target: OutputTarget,
    mix_filter: str,
) -> list[str]:
    args = [
        "-f", "concat", "-safe", "0", "-i", manifest_name,
        "-i", background_name,
        "-filter_complex", mix_filter,
        "-map", "0:v", "-map", "[mixed]",
        "-c:v", "copy",
    ]
    args += audio_codec_args(target)
    args += ["-shortest", "-movflags", "+faststart", "-y", output_name]
    return args


def format_seconds(duration_ms: int) -> str:
    return f"{duration_ms / 1000:.3f}"


def _even(value: float) -> int:
    return max(2, int(value) // 2 * 2)
