"""FastAPI application factory.

Run with: ``uvicorn tvcurator.main:app`` or the ``tvcurator`` console script.
"""

from typing import Any

from fastapi import FastAPI

from tvcurator import __version__
from tvcurator.api import api_router
from tvcurator.api.exception_handlers import register_exception_handlers
from tvcurator.config import Settings
from tvcurator.infrastructure.lifecycle import lifespan
from tvcurator.infrastructure.observability.middleware import RequestLoggingMiddleware


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Explicit settings (tests). Defaults to the cached env settings at startup.
    """
    app = FastAPI(
        title="tvcurator",
        version=__version__,
        description="Background task core of the TV library curation dashboard",
        lifespan=lifespan,
    )
    if settings is not None:
        app.state.settings = settings

    register_exception_handlers(app)
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api")

    # Liveness only, no dependency checks
    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, Any]:
        return {"status": "healthy", "version": __version__}

    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run("tvcurator.main:app", host="0.0.0.0", port=8765)
