"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is stored as an attribute so task executors can put it straight
    # into tracker.fail(exc.message) without str() gymnastics. Don't raise this directly,
    # use a subclass so the API layer can map it to the right status code.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationException(DomainException):
    """Raised when input validation fails.

    HTTP Status: 400
    """

    pass


class InvalidStateException(DomainException):
    """Raised when an entity is in an invalid state for the requested operation.

    Example: cancelling a task that already completed.

    HTTP Status: 400
    """

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    Raised when required configuration is missing or invalid.

    HTTP Status: 503 (Service Unavailable)

    Example:
        raise ConfigurationError("DATABASE_URL not configured")
        raise ConfigurationError("At least one of TV_SHOWS_PATH or MOVIES_PATH must be set")
    """

    pass


class ScanCancelledError(DomainException):
    """Raised inside a scan when the user requested cancellation.

    Never leaves the scan orchestrator - it's caught there and turned into
    tracker.cancel().
    """

    def __init__(self, message: str = "Scan cancelled by user") -> None:
        super().__init__(message)


class MetadataProviderError(DomainException):
    """External metadata provider (TMDB) returned an error.

    HTTP Status: 502
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NoConfidentMatchError(DomainException):
    """TMDB search returned nothing close enough to the local title."""

    def __init__(self, message: str = "No confident match found") -> None:
        super().__init__(message)


class MediaAnalysisError(DomainException):
    """FFprobe failed or produced unusable output."""

    pass


__all__ = [
    "ConfigurationError",
    "DomainException",
    "EntityNotFoundException",
    "InvalidStateException",
    "MediaAnalysisError",
    "MetadataProviderError",
    "NoConfidentMatchError",
    "ScanCancelledError",
    "ValidationException",
]
