"""API middleware package."""

from src.companion.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
