"""Repository classes for catalog and library persistence.

All statements go through ``ResilientStore``; repositories never hold a
connection of their own.
"""

import json
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Row, delete, func, insert, select, update

from flourish.core.results import Found, NotFound
from flourish.core.schema import CatalogDetails, CatalogEntry, LibraryEntry
from flourish.db.models import CatalogDetailsDB, CatalogEntryDB, LibraryEntryDB
from flourish.db.store import ResilientStore

entries_table = CatalogEntryDB.__table__
details_table = CatalogDetailsDB.__table__
library_table = LibraryEntryDB.__table__

# SQLite caps bound parameters per statement; keep IN lists well below it.
ID_CHUNK_SIZE = 500


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _chunks(items: Sequence[int], size: int) -> Iterable[Sequence[int]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class CatalogRepository:
    """Repository for catalog index entries."""

    def __init__(self, store: ResilientStore):
        self.store = store

    def existing_ids(self, ids: Iterable[int]) -> set[int]:
        """Return the subset of ``ids`` already stored."""
        wanted = sorted(set(ids))
        found: set[int] = set()
        for chunk in _chunks(wanted, ID_CHUNK_SIZE):
            stmt = select(entries_table.c.id).where(entries_table.c.id.in_(chunk))
            found.update(row[0] for row in self.store.execute_read(stmt))
        return found

    def upsert_entries(self, entries: Sequence[CatalogEntry]) -> tuple[int, int]:
        """
        Insert new entries and refresh existing ones, by id.

        Runs as one transaction. Duplicate ids within ``entries`` collapse
        to the last occurrence.

        Returns:
            Tuple of (inserted, updated) counts.
        """
        by_id = {entry.id: entry for entry in entries}
        if not by_id:
            return 0, 0

        with self.store.transaction():
            existing = self.existing_ids(by_id)
            new_rows = [self._to_row(e) for i, e in by_id.items() if i not in existing]
            if new_rows:
                self.store.execute_write(insert(entries_table), new_rows)
            for entry_id in sorted(existing):
                values = self._to_row(by_id[entry_id])
                del values["id"]
                values["updated_at"] = _utc_now()
                self.store.execute_write(
                    update(entries_table).where(entries_table.c.id == entry_id).values(**values)
                )
        return len(new_rows), len(existing)

    def get_entry(self, entry_id: int) -> Found[CatalogEntry] | NotFound:
        """Get an entry by id."""
        stmt = select(entries_table).where(entries_table.c.id == entry_id)
        rows = self.store.execute_read(stmt)
        if not rows:
            return NotFound(entry_id)
        return Found(self._to_domain(rows[0]))

    def list_entries(self) -> list[CatalogEntry]:
        """List all entries in ascending id order."""
        stmt = select(entries_table).order_by(entries_table.c.id)
        return [self._to_domain(row) for row in self.store.execute_read(stmt)]

    def count(self) -> int:
        """Get total count of entries."""
        stmt = select(func.count()).select_from(entries_table)
        rows = self.store.execute_read(stmt)
        return int(rows[0][0]) if rows else 0

    @staticmethod
    def _to_row(entry: CatalogEntry) -> dict[str, Any]:
        return {
            "id": entry.id,
            "common_name": entry.common_name,
            "scientific_name": entry.scientific_name,
            "other_names_json": json.dumps(entry.other_names),
            "family": entry.family,
            "genus": entry.genus,
            "image_url": entry.image_url,
            "synonyms_json": json.dumps(sorted(entry.synonyms)),
        }

    @staticmethod
    def _to_domain(row: Row[Any]) -> CatalogEntry:
        data = row._mapping
        return CatalogEntry(
            id=data["id"],
            common_name=data["common_name"],
            scientific_name=data["scientific_name"],
            other_names=json.loads(data["other_names_json"] or "[]"),
            family=data["family"],
            genus=data["genus"],
            image_url=data["image_url"],
            synonyms=set(json.loads(data["synonyms_json"] or "[]")),
        )


class DetailsRepository:
    """Repository for catalog details."""

    def __init__(self, store: ResilientStore):
        self.store = store

    def exists(self, details_id: int) -> bool:
        stmt = select(details_table.c.id).where(details_table.c.id == details_id)
        return bool(self.store.execute_read(stmt))

    def upsert(self, details: CatalogDetails) -> bool:
        """
        Insert or replace the details for one id.

        Returns:
            True if a new row was inserted, False if an existing one was refreshed.
        """
        values = details.model_dump()
        with self.store.transaction():
            if self.exists(details.id):
                del values["id"]
                values["updated_at"] = _utc_now()
                self.store.execute_write(
                    update(details_table).where(details_table.c.id == details.id).values(**values)
                )
                return False
            self.store.execute_write(insert(details_table).values(**values))
            return True

    def get(self, details_id: int) -> Found[CatalogDetails] | NotFound:
        """Get details by id."""
        stmt = select(details_table).where(details_table.c.id == details_id)
        rows = self.store.execute_read(stmt)
        if not rows:
            return NotFound(details_id)
        return Found(self._to_domain(rows[0]))

    def list_all(self) -> list[CatalogDetails]:
        """List all details in ascending id order."""
        stmt = select(details_table).order_by(details_table.c.id)
        return [self._to_domain(row) for row in self.store.execute_read(stmt)]

    @staticmethod
    def _to_domain(row: Row[Any]) -> CatalogDetails:
        return CatalogDetails.model_validate(dict(row._mapping))


class LibraryRepository:
    """Repository for user library entries."""

    def __init__(self, store: ResilientStore):
        self.store = store

    def add(self, entry: LibraryEntry) -> LibraryEntry:
        """Store a new entry and return it with its assigned id."""
        values = {
            "owner_id": entry.owner_id,
            "plant_id": entry.plant_id,
            "watering_frequency_days": entry.watering_frequency_days,
            "last_watered": entry.last_watered,
            "next_watering": entry.next_watering,
            "hashtags_json": json.dumps(entry.hashtags),
        }
        result = self.store.execute_write(insert(library_table).values(**values))
        new_id = result.inserted_primary_key[0] if result.inserted_primary_key else None
        return entry.model_copy(update={"id": new_id})

    def get(self, entry_id: int) -> Found[LibraryEntry] | NotFound:
        """Get an entry by id."""
        stmt = select(library_table).where(library_table.c.id == entry_id)
        rows = self.store.execute_read(stmt)
        if not rows:
            return NotFound(entry_id)
        return Found(self._to_domain(rows[0]))

    def list_for_owner(self, owner_id: int) -> list[LibraryEntry]:
        """List an owner's entries in insertion order."""
        stmt = (
            select(library_table)
            .where(library_table.c.owner_id == owner_id)
            .order_by(library_table.c.id)
        )
        return [self._to_domain(row) for row in self.store.execute_read(stmt)]

    def list_owner_ids(self) -> list[int]:
        stmt = select(library_table.c.owner_id).distinct().order_by(library_table.c.owner_id)
        return [row[0] for row in self.store.execute_read(stmt)]

    def update_watering(self, entry: LibraryEntry) -> None:
        """Persist the watering schedule of an existing entry."""
        self.store.execute_write(
            update(library_table)
            .where(library_table.c.id == entry.id)
            .values(last_watered=entry.last_watered, next_watering=entry.next_watering)
        )

    def update_hashtags(self, entry_id: int, hashtags: list[str]) -> None:
        self.store.execute_write(
            update(library_table)
            .where(library_table.c.id == entry_id)
            .values(hashtags_json=json.dumps(hashtags))
        )

    def delete(self, entry_id: int) -> bool:
        """Delete an entry by id."""
        result = self.store.execute_write(delete(library_table).where(library_table.c.id == entry_id))
        return result.rowcount > 0

    @staticmethod
    def _to_domain(row: Row[Any]) -> LibraryEntry:
        data = row._mapping
        return LibraryEntry(
            id=data["id"],
            owner_id=data["owner_id"],
            plant_id=data["plant_id"],
            watering_frequency_days=data["watering_frequency_days"],
            last_watered=data["last_watered"],
            next_watering=data["next_watering"],
            hashtags=json.loads(data["hashtags_json"] or "[]"),
        )
