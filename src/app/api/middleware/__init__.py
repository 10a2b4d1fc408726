"""API middleware package."""

from src.app.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
