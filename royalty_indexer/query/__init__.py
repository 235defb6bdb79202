"""Read-only query projections."""

from .service import QueryService

__all__ = ["QueryService"]
