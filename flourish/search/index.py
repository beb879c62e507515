"""
Search Index Module
===================

Holds the catalog in memory and answers ranked substring queries over the
common name, the scientific name and the joined other names of each entry.

A reload builds a complete new snapshot and swaps it in with a single
assignment; a query running during a reload sees either the old or the
new snapshot in full.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from flourish.core.schema import CatalogEntry
from flourish.ingestion.snapshot import read_entries

logger = logging.getLogger(__name__)

# Score of an entry no field of which contains the query
NO_MATCH_SCORE = 100


@dataclass(frozen=True)
class _Snapshot:
    entries: tuple[CatalogEntry, ...] = ()
    loaded_at: datetime | None = None


@dataclass
class SearchResult:
    """One page of search results."""

    entries: list[CatalogEntry] = field(default_factory=list)
    total_count: int = 0
    limit: int = 50
    offset: int = 0

    @property
    def has_more(self) -> bool:
        """Check if there are more results."""
        return self.offset + len(self.entries) < self.total_count


def _search_fields(entry: CatalogEntry) -> tuple[str, str, str]:
    return (
        entry.common_name.lower(),
        entry.scientific_name.lower(),
        entry.other_names_text.lower(),
    )


def match_score(entry: CatalogEntry, query: str) -> int:
    """
    Rank of ``entry`` for an already lowercased query.

    The lowest index at which the query first occurs in any field; 0 as
    soon as the query is a prefix of a field, ``NO_MATCH_SCORE`` when no
    field contains it.
    """
    best: int | None = None
    for text in _search_fields(entry):
        index = text.find(query)
        if index == 0:
            return 0
        if index > 0 and (best is None or index < best):
            best = index
    return NO_MATCH_SCORE if best is None else best


def matches(entry: CatalogEntry, query: str) -> bool:
    return any(query in text for text in _search_fields(entry))


class SearchIndex:
    """
    Read-only catalog snapshot with ranked search.

    Usage:
        index = SearchIndex()
        index.load("~/.flourish/snapshots/catalog_entries.json")
        index.search("rose")
    """

    def __init__(self, entries: Iterable[CatalogEntry] | None = None) -> None:
        self._snapshot = _Snapshot()
        if entries is not None:
            self.load(entries)

    @property
    def size(self) -> int:
        return len(self._snapshot.entries)

    @property
    def loaded_at(self) -> datetime | None:
        """When the current snapshot was loaded; None before the first load."""
        return self._snapshot.loaded_at

    def load(self, source: str | Path | Iterable[CatalogEntry]) -> int:
        """
        Replace the snapshot with the entries from ``source``.

        Args:
            source: Path to a snapshot file, or the entries themselves

        Returns:
            Number of entries loaded

        Raises:
            SnapshotError: If a snapshot file cannot be read. The previous
                snapshot stays in place.
        """
        if isinstance(source, (str, Path)):
            entries = tuple(read_entries(source))
            origin = str(source)
        else:
            entries = tuple(source)
            origin = "memory"

        self._snapshot = _Snapshot(entries=entries, loaded_at=datetime.now(UTC))
        logger.info(f"Loaded {len(entries)} catalog entries into the search index from {origin}")
        return len(entries)

    def search(self, query: str | None, limit: int | None = None) -> list[CatalogEntry]:
        """
        Find entries containing ``query``, best matches first.

        Matching is case-insensitive. Entries where the query starts a field
        come first, then by how early it occurs; ties keep snapshot order.
        An empty or None query returns no results.
        """
        if not query:
            return []
        snapshot = self._snapshot
        needle = query.lower()
        scored = [(match_score(e, needle), e) for e in snapshot.entries if matches(e, needle)]
        scored.sort(key=lambda pair: pair[0])
        results = [entry for _, entry in scored]
        if limit is not None:
            results = results[:limit]
        return results

    def search_page(self, query: str | None, limit: int = 50, offset: int = 0) -> SearchResult:
        """Search and return one page of the ranked results."""
        results = self.search(query)
        return SearchResult(
            entries=results[offset : offset + limit],
            total_count=len(results),
            limit=limit,
            offset=offset,
        )
