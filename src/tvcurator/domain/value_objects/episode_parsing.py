"""Regex patterns and parsers for Sonarr/Plex-style TV file naming.

Hey future me - the scanner hands every discovered video file to
``parse_episode_filename``. It extracts show / year / season / episode from the
filename and, when the filename doesn't carry the show name, from the folder
structure. Returning None means "can't place this file" and the scanner records
it as a per-item error.

Supported layouts:
1. ``Show Name (2008)/Season 01/Show Name - S01E02 - Episode Title.mkv``
2. ``Show.Name.2008.S01E02.720p.WEB-DL.mkv``
3. ``Show Name/Season 1/1x02 - Episode Title.mp4``
4. ``Show Name/Season 02/S02E05.mkv`` (show name from folder)

Usage:
    from tvcurator.domain.value_objects.episode_parsing import parse_episode_filename

    parsed = parse_episode_filename("/tv/Breaking Bad (2008)/Season 01/Breaking Bad - S01E01 - Pilot.mkv")
    parsed.show_name  # "Breaking Bad"
"""

import re
from dataclasses import dataclass
from pathlib import PurePath

# =============================================================================
# REGEX PATTERNS
# =============================================================================

# "S01E02", "s1e2", "S01.E02", "S01 E02"
# Examples:
#   "Breaking Bad - S01E02 - Cat's in the Bag.mkv" → season=1, episode=2
#   "the.office.s03e10.720p.mkv" → season=3, episode=10
SEASON_EPISODE_PATTERN = re.compile(
    r"[Ss](?P<season>\d{1,2})[\s._-]?[Ee](?P<episode>\d{1,3})"
)

# "1x02", "01x02" (must not be preceded by a digit, "1920x1080" is not an episode!)
# Examples:
#   "Friends 1x02 - The Sonogram.avi" → season=1, episode=2
CROSS_PATTERN = re.compile(r"(?<![\dA-Za-z])(?P<season>\d{1,2})x(?P<episode>\d{2,3})(?!\d)")

# Year in parentheses or as a dotted token: "(2008)", ".2008."
YEAR_PATTERN = re.compile(r"(?:\((?P<paren>(?:19|20)\d{2})\)|(?<![\d])(?P<bare>(?:19|20)\d{2})(?![\d]))")

# Show folder: "Title (Year)" with optional trailing tags "[tvdb-1234]"
SHOW_FOLDER_PATTERN = re.compile(
    r"^(?P<title>.+?)"  # Show title (non-greedy so the year isn't eaten)
    r"(?:\s*\((?P<year>\d{4})\))?"  # Optional year in parentheses
    r"(?:\s*\[[^\]]*\])*"  # Optional tags like [imdb-tt123]
    r"$"
)

# "Season 01", "Season 1", "S01", "Specials"
SEASON_FOLDER_PATTERN = re.compile(r"^(?:season\s*\d+|s\d{1,2}|specials)$", re.IGNORECASE)

# Release junk that ends an episode title: "720p", "WEB-DL", "x264"...
QUALITY_TOKEN_PATTERN = re.compile(
    r"\b(?:\d{3,4}p|4k|uhd|web[-.]?dl|webrip|bluray|blu-ray|hdtv|dvdrip|x264|x265|h\.?26[45]|hevc|remux)\b",
    re.IGNORECASE,
)

_SEPARATORS = re.compile(r"[._]+")
_TRIM_CHARS = " -–—._[]("


@dataclass(frozen=True)
class ParsedEpisode:
    """Show/season/episode placement of one video file."""

    show_name: str
    season_number: int
    episode_number: int
    year: int | None = None
    episode_title: str | None = None


def show_name_match_key(name: str) -> str:
    """Normalize a show name for matching.

    "The Office (US)" and "the.office.us" both become "theofficeus".
    """
    return "".join(ch for ch in name.lower() if ch.isalnum())


def parse_show_folder(folder_name: str) -> tuple[str, int | None]:
    """Split a show folder name into title and year.

    Examples:
        "Breaking Bad (2008)" → ("Breaking Bad", 2008)
        "Doctor Who" → ("Doctor Who", None)
    """
    match = SHOW_FOLDER_PATTERN.match(folder_name.strip())
    if not match:
        return folder_name.strip(), None
    year = match.group("year")
    return match.group("title").strip(), int(year) if year else None


def _clean(text: str) -> str:
    # Dots/underscores are word separators in scene names
    return _SEPARATORS.sub(" ", text).strip(_TRIM_CHARS).strip()


def _split_show_and_year(raw: str) -> tuple[str, int | None]:
    """Pull a trailing year out of the show part of a filename."""
    year: int | None = None
    year_match = None
    for year_match in YEAR_PATTERN.finditer(raw):
        pass
    if year_match is not None:
        year = int(year_match.group("paren") or year_match.group("bare"))
        raw = raw[: year_match.start()]
    return _clean(raw), year


def _episode_title(raw: str) -> str | None:
    quality = QUALITY_TOKEN_PATTERN.search(raw)
    if quality:
        raw = raw[: quality.start()]
    title = _clean(raw)
    return title or None


def _show_from_folders(path: PurePath) -> tuple[str, int | None] | None:
    parents = list(path.parents)
    if not parents:
        return None
    folder = parents[0].name
    # Skip "Season 01" level and use the show folder above it
    if SEASON_FOLDER_PATTERN.match(folder) and len(parents) > 1:
        folder = parents[1].name
    if not folder or SEASON_FOLDER_PATTERN.match(folder):
        return None
    return parse_show_folder(folder)


def parse_episode_filename(filepath: str) -> ParsedEpisode | None:
    """Parse a video file path into show/season/episode.

    Args:
        filepath: Absolute or relative path of the video file

    Returns:
        ParsedEpisode, or None if season/episode or the show name can't be found
    """
    path = PurePath(filepath)
    stem = path.stem

    match = SEASON_EPISODE_PATTERN.search(stem) or CROSS_PATTERN.search(stem)
    if match is None:
        return None

    season = int(match.group("season"))
    episode = int(match.group("episode"))

    show_name, year = _split_show_and_year(stem[: match.start()])
    folder_info = _show_from_folders(path)

    # Hey future me - the FOLDER is more trustworthy than the filename prefix ("Show (2008)"
    # folders are curated by Sonarr, filenames come from random release groups). We only
    # fall back to the filename when there's no usable folder.
    if folder_info is not None:
        folder_name, folder_year = folder_info
        if not show_name or show_name_match_key(show_name) == show_name_match_key(folder_name):
            show_name = folder_name
        year = year or folder_year

    if not show_name:
        return None

    return ParsedEpisode(
        show_name=show_name,
        season_number=season,
        episode_number=episode,
        year=year,
        episode_title=_episode_title(stem[match.end():]),
    )
