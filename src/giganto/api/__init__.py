"""Administrative API surface."""

from .admin import AdminApi

__all__ = ["AdminApi"]
