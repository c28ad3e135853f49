"""HTTP API: routers, schemas, dependencies and exception handlers."""

from tvcurator.api.routers import api_router

__all__ = ["api_router"]
