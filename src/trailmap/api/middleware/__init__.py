"""API middleware package."""

from src.trailmap.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
