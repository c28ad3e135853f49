"""Exception handlers converting domain exceptions into HTTP responses."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from tvcurator.domain.exceptions import (
    ConfigurationError,
    EntityNotFoundException,
    InvalidStateException,
    MediaAnalysisError,
    MetadataProviderError,
    ValidationException,
)

logger = logging.getLogger(__name__)


# Hey future me - routers just raise domain exceptions and these handlers pick the status code.
# Anything not listed here falls through to FastAPI's default 500. Register BEFORE the first
# request (create_app does it).
def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers for the domain exception hierarchy."""

    @app.exception_handler(EntityNotFoundException)
    async def entity_not_found_handler(
        request: Request, exc: EntityNotFoundException
    ) -> JSONResponse:
        """404 Not Found."""
        logger.info(
            f"Entity not found at {request.url.path}: {exc.entity_type} {exc.entity_id}",
            extra={"path": request.url.path, "entity_type": exc.entity_type},
        )
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.message}
        )

    @app.exception_handler(ValidationException)
    async def validation_handler(request: Request, exc: ValidationException) -> JSONResponse:
        """400 Bad Request."""
        logger.warning(f"Validation error at {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"detail": exc.message}
        )

    @app.exception_handler(InvalidStateException)
    async def invalid_state_handler(
        request: Request, exc: InvalidStateException
    ) -> JSONResponse:
        """400 Bad Request (operation not allowed in the current state)."""
        logger.warning(f"Invalid state at {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"detail": exc.message}
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        """503 Service Unavailable (feature not configured)."""
        logger.warning(f"Configuration error at {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": exc.message}
        )

    @app.exception_handler(MetadataProviderError)
    async def metadata_provider_handler(
        request: Request, exc: MetadataProviderError
    ) -> JSONResponse:
        """502 Bad Gateway (TMDB answered with an error)."""
        logger.error(f"Metadata provider error at {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": exc.message}
        )

    @app.exception_handler(MediaAnalysisError)
    async def media_analysis_handler(
        request: Request, exc: MediaAnalysisError
    ) -> JSONResponse:
        """500 with the ffprobe error text."""
        logger.error(f"Media analysis error at {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": exc.message}
        )
