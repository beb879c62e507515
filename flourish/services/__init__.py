"""Application services for Flourish."""

from flourish.services.library_service import LibraryService

__all__ = ["LibraryService"]
