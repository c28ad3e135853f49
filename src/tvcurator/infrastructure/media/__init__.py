"""Media file inspection (ffprobe)."""

from tvcurator.infrastructure.media.ffprobe import (
    ExtractionResult,
    MediaSummary,
    NormalizedTrack,
    extract_media_info,
    parse_ffprobe_output,
    run_ffprobe,
)

__all__ = [
    "ExtractionResult",
    "MediaSummary",
    "NormalizedTrack",
    "extract_media_info",
    "parse_ffprobe_output",
    "run_ffprobe",
]
