"""Breadth-first discovery of video files below the library roots."""

# Hey future me - discovery is the ONLY part of a scan that touches the disk directly. Every
# directory listing (and the stat() of its files) runs in a thread via asyncio.to_thread,
# because a NAS that takes 2 seconds to list a folder would otherwise freeze every HTTP request
# for those 2 seconds. The generator also sleeps(0) every few files for the same reason.

import asyncio
import logging
import os
from collections import deque
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = frozenset(
    {".mkv", ".mp4", ".avi", ".m4v", ".ts", ".wmv", ".mov", ".webm", ".flv", ".mpg", ".mpeg"}
)


@dataclass(frozen=True)
class DiscoveredFile:
    """A video file seen during the walk."""

    path: str
    size: int
    modified_at: datetime


def is_video_file(name: str) -> bool:
    """Check the extension against VIDEO_EXTENSIONS (case-insensitive)."""
    return Path(name).suffix.lower() in VIDEO_EXTENSIONS


def _list_directory(directory: Path) -> tuple[list[Path], list[DiscoveredFile]]:
    """List one directory (blocking, runs in a thread)."""
    subdirs: list[Path] = []
    files: list[DiscoveredFile] = []

    with os.scandir(directory) as entries:
        for entry in sorted(entries, key=lambda e: e.name):
            # Hidden files, .grab folders, .DS_Store and friends
            if entry.name.startswith("."):
                continue
            try:
                if entry.is_dir(follow_symlinks=True):
                    subdirs.append(Path(entry.path))
                    continue
                if not is_video_file(entry.name):
                    continue
                stat = entry.stat(follow_symlinks=True)
            except OSError as e:
                logger.warning(f"Skipping {entry.path}: {e}")
                continue
            files.append(
                DiscoveredFile(
                    path=entry.path,
                    size=stat.st_size,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
                )
            )

    return subdirs, files


async def discover_files(
    roots: Iterable[Path], yield_interval: int = 10
) -> AsyncIterator[DiscoveredFile]:
    """Walk the roots breadth-first and yield every video file.

    Args:
        roots: Library root folders (missing ones are skipped with a warning)
        yield_interval: Give the event loop a turn every N files

    Yields:
        DiscoveredFile for each video file found
    """
    queue: deque[Path] = deque()
    for root in roots:
        if not root.is_dir():
            logger.warning(f"Library root {root} does not exist or is not a directory, skipping")
            continue
        queue.append(root)

    seen = 0
    while queue:
        directory = queue.popleft()
        try:
            subdirs, files = await asyncio.to_thread(_list_directory, directory)
        except OSError as e:
            logger.warning(f"Cannot read directory {directory}: {e}")
            continue

        queue.extend(subdirs)
        for discovered in files:
            yield discovered
            seen += 1
            if seen % yield_interval == 0:
                await asyncio.sleep(0)
