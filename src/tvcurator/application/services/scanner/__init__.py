"""Library scanner: discovery, parsing and batched persistence as a background task."""

from tvcurator.application.services.scanner.filesystem import (
    VIDEO_EXTENSIONS,
    DiscoveredFile,
    discover_files,
)
from tvcurator.application.services.scanner.library_writer import (
    BatchResult,
    LibraryBatchWriter,
    ScanItem,
)
from tvcurator.application.services.scanner.orchestrator import (
    PARSE_ERROR,
    ScanOptions,
    ScanOrchestrator,
    StartScanResult,
)

__all__ = [
    "PARSE_ERROR",
    "VIDEO_EXTENSIONS",
    "BatchResult",
    "DiscoveredFile",
    "LibraryBatchWriter",
    "ScanItem",
    "ScanOptions",
    "ScanOrchestrator",
    "StartScanResult",
    "discover_files",
]
