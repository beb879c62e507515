"""In-memory catalog search."""

from flourish.search.index import SearchIndex, SearchResult

__all__ = ["SearchIndex", "SearchResult"]
