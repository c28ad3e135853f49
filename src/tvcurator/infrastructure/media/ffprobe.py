"""FFprobe runner and stream normalization."""

# Hey future me - ffprobe is an external BINARY, not a library. We run it with
# asyncio.create_subprocess_exec (never shell=True, filenames are full of quotes and brackets)
# and parse its JSON. Everything below run_ffprobe() is pure dict-in/dataclass-out, so tests
# can feed canned ffprobe output without the binary being installed.

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from tvcurator.domain.entities import TrackType
from tvcurator.domain.exceptions import MediaAnalysisError

logger = logging.getLogger(__name__)

FFPROBE_ARGS = ("-v", "quiet", "-print_format", "json", "-show_format", "-show_streams")


@dataclass
class NormalizedTrack:
    """One video/audio/subtitle stream in our own shape."""

    track_type: TrackType
    track_index: int
    codec: str | None = None
    codec_long: str | None = None
    width: int | None = None
    height: int | None = None
    bit_depth: int | None = None
    frame_rate: float | None = None
    hdr_type: str | None = None
    profile: str | None = None
    channels: int | None = None
    channel_layout: str | None = None
    sample_rate: int | None = None
    language: str | None = None
    title: str | None = None
    bitrate: int | None = None
    is_default: bool = False
    is_forced: bool = False


@dataclass
class MediaSummary:
    """Flat fields stored directly on the episode file."""

    codec: str | None = None
    resolution: str | None = None
    bitrate: int | None = None
    container: str | None = None
    audio_format: str | None = None
    hdr_type: str | None = None
    duration: int | None = None
    audio_languages: list[str] = field(default_factory=list)
    subtitle_languages: list[str] = field(default_factory=list)


@dataclass
class ExtractionResult:
    """Summary plus per-stream details of one file."""

    summary: MediaSummary
    tracks: list[NormalizedTrack]


async def run_ffprobe(ffprobe_path: str, filepath: str, timeout: float = 30.0) -> dict[str, Any]:
    """Run ffprobe on a file and return its parsed JSON output.

    Raises:
        MediaAnalysisError: binary/file missing, timeout, non-zero exit or bad JSON
    """
    try:
        process = await asyncio.create_subprocess_exec(
            ffprobe_path,
            *FFPROBE_ARGS,
            filepath,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise MediaAnalysisError(f"FFprobe binary not found: {ffprobe_path}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError as e:
        process.kill()
        await process.wait()
        raise MediaAnalysisError(f"FFprobe timed out analyzing: {filepath}") from e

    if process.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()
        raise MediaAnalysisError(
            f"FFprobe failed with exit code {process.returncode}"
            + (f": {detail}" if detail else "")
        )

    try:
        return json.loads(stdout)
    except json.JSONDecodeError as e:
        raise MediaAnalysisError(f"FFprobe returned invalid JSON: {e}") from e


def detect_hdr(stream: dict[str, Any]) -> str | None:
    """HDR flavour from color transfer and side data."""
    side_types = [str(sd.get("side_data_type") or "") for sd in stream.get("side_data_list") or []]

    if any("dolby vision" in t.lower() or "DOVI" in t for t in side_types):
        return "Dolby Vision"
    if any("HDR10+" in t or "HDR Dynamic" in t or "SMPTE ST 2094" in t for t in side_types):
        return "HDR10+"

    transfer = stream.get("color_transfer")
    if transfer == "smpte2084":
        static = any("Mastering display" in t or "Content light level" in t for t in side_types)
        return "HDR10" if static else "PQ"
    if transfer == "arib-std-b67":
        return "HLG"
    return None


def detect_bit_depth(pix_fmt: str | None) -> int | None:
    """Bit depth from the pixel format name."""
    if not pix_fmt:
        return None
    if any(tag in pix_fmt for tag in ("10le", "10be", "p010")):
        return 10
    if any(tag in pix_fmt for tag in ("12le", "12be", "p012")):
        return 12
    if any(tag in pix_fmt for tag in ("yuv420p", "yuv422p", "yuv444p", "yuvj")):
        return 8
    return None


def parse_frame_rate(rate: str | None) -> float | None:
    """Parse an ffprobe rate like "24000/1001" into 23.976."""
    if not rate or rate == "0/0":
        return None
    numerator, sep, denominator = rate.partition("/")
    try:
        if sep:
            den = float(denominator)
            return round(float(numerator) / den, 3) if den > 0 else None
        return float(rate)
    except ValueError:
        return None


def normalize_channel_layout(layout: str | None, channels: int | None) -> str | None:
    """Consistent channel layout names ("5.1(side)" -> "5.1")."""
    if layout:
        for name in ("stereo", "5.1", "7.1", "mono"):
            if name in layout:
                return name
        return layout.split("(")[0].strip()
    if channels:
        return {1: "mono", 2: "stereo", 6: "5.1", 8: "7.1"}.get(channels, f"{channels}ch")
    return None


def resolution_name(width: int | None, height: int | None) -> str | None:
    """Common name for the frame size."""
    if not width or not height:
        return None
    if width >= 3840:
        return "4K"
    if width >= 2560:
        return "1440p"
    if width >= 1920:
        return "1080p"
    if width >= 1280:
        return "720p"
    if width >= 720:
        return "480p"
    return f"{width}x{height}"


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def normalize_stream(stream: dict[str, Any]) -> NormalizedTrack | None:
    """Convert one ffprobe stream, None for data/attachment streams."""
    try:
        track_type = TrackType(stream.get("codec_type"))
    except ValueError:
        return None

    is_video = track_type is TrackType.VIDEO
    tags = stream.get("tags") or {}
    disposition = stream.get("disposition") or {}

    return NormalizedTrack(
        track_type=track_type,
        track_index=int(stream.get("index", 0)),
        codec=stream.get("codec_name") or None,
        codec_long=stream.get("codec_long_name") or None,
        width=stream.get("width") or None,
        height=stream.get("height") or None,
        bit_depth=detect_bit_depth(stream.get("pix_fmt")) if is_video else None,
        frame_rate=(
            parse_frame_rate(stream.get("r_frame_rate") or stream.get("avg_frame_rate"))
            if is_video
            else None
        ),
        hdr_type=detect_hdr(stream) if is_video else None,
        profile=stream.get("profile") or None,
        channels=stream.get("channels") or None,
        channel_layout=normalize_channel_layout(stream.get("channel_layout"), stream.get("channels")),
        sample_rate=_int_or_none(stream.get("sample_rate")),
        language=tags.get("language") or None,
        title=tags.get("title") or None,
        bitrate=_int_or_none(stream.get("bit_rate")),
        is_default=disposition.get("default") == 1,
        is_forced=disposition.get("forced") == 1,
    )


def _primary(tracks: list[NormalizedTrack], track_type: TrackType) -> NormalizedTrack | None:
    of_type = [t for t in tracks if t.track_type is track_type]
    return next((t for t in of_type if t.is_default), of_type[0] if of_type else None)


def _languages(tracks: list[NormalizedTrack], track_type: TrackType) -> list[str]:
    # dict.fromkeys keeps first-seen order while dropping duplicates
    return list(dict.fromkeys(t.language for t in tracks if t.track_type is track_type and t.language))


def build_summary(output: dict[str, Any], tracks: list[NormalizedTrack]) -> MediaSummary:
    """Flat summary: primary video/audio track plus container info."""
    video = _primary(tracks, TrackType.VIDEO)
    audio = _primary(tracks, TrackType.AUDIO)
    fmt = output.get("format") or {}

    format_name = str(fmt.get("format_name") or "").split(",")[0] or None
    duration: int | None = None
    if fmt.get("duration"):
        try:
            duration = round(float(fmt["duration"]))
        except (TypeError, ValueError):
            duration = None

    return MediaSummary(
        codec=video.codec if video else None,
        resolution=resolution_name(video.width, video.height) if video else None,
        bitrate=_int_or_none(fmt.get("bit_rate")),
        container=format_name,
        audio_format=audio.codec if audio else None,
        hdr_type=video.hdr_type if video else None,
        duration=duration,
        audio_languages=_languages(tracks, TrackType.AUDIO),
        subtitle_languages=_languages(tracks, TrackType.SUBTITLE),
    )


def parse_ffprobe_output(output: dict[str, Any]) -> ExtractionResult:
    """Turn raw ffprobe JSON into summary + tracks."""
    tracks = [t for t in map(normalize_stream, output.get("streams") or []) if t is not None]
    return ExtractionResult(summary=build_summary(output, tracks), tracks=tracks)


async def extract_media_info(
    ffprobe_path: str, filepath: str, timeout: float = 30.0
) -> ExtractionResult:
    """Run ffprobe and normalize the result."""
    output = await run_ffprobe(ffprobe_path, filepath, timeout)
    result = parse_ffprobe_output(output)
    logger.debug(f"Extracted {len(result.tracks)} tracks from {filepath}")
    return result
