"""
Snapshot Files Module
=====================

Writes the catalog to JSON files that the search index loads from, and
reads them back.

Directory structure:
    {base_path}/catalog_entries.json
    {base_path}/catalog_details.json

Each file is a UTF-8 JSON array in ascending id order. Files are written to
a temporary name and renamed into place, so a reader never sees a
half-written snapshot.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from flourish.core.schema import CatalogDetails, CatalogEntry
from flourish.db.repositories import CatalogRepository, DetailsRepository
from flourish.db.store import ResilientStore

logger = logging.getLogger(__name__)

ENTRIES_FILE = "catalog_entries.json"
DETAILS_FILE = "catalog_details.json"

# Permissions of written snapshot files (mkstemp creates them 0600)
SNAPSHOT_FILE_MODE = 0o644


class SnapshotError(Exception):
    """Raised when a snapshot file cannot be written or read."""


@dataclass
class SnapshotInfo:
    """Where a snapshot was written and how many records it holds."""

    path: Path
    record_count: int
    size_bytes: int


def entry_to_json(entry: CatalogEntry) -> dict[str, Any]:
    data = entry.model_dump(mode="json")
    data["synonyms"] = sorted(entry.synonyms)
    return data


class SnapshotWriter:
    """Writes catalog collections as JSON array files under ``base_path``."""

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path).expanduser().resolve()

    def _write(self, records: list[dict[str, Any]], file_name: str) -> SnapshotInfo:
        records.sort(key=lambda r: r["id"])
        target = self.base_path / file_name
        payload = json.dumps(records, ensure_ascii=False, indent=2).encode("utf-8")
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.base_path, prefix=f".{file_name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(payload)
                os.chmod(tmp_name, SNAPSHOT_FILE_MODE)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise SnapshotError(f"Failed to write snapshot {target}: {e}") from e

        logger.info(f"Wrote {len(records)} records to {target}")
        return SnapshotInfo(path=target, record_count=len(records), size_bytes=len(payload))

    def write_entries(
        self, entries: Iterable[CatalogEntry], file_name: str = ENTRIES_FILE
    ) -> SnapshotInfo:
        """
        Write catalog entries as a JSON array.

        Args:
            entries: Entries in any order
            file_name: File name under the base path

        Returns:
            SnapshotInfo for the written file
        """
        return self._write([entry_to_json(e) for e in entries], file_name)

    def write_details(
        self, details: Iterable[CatalogDetails], file_name: str = DETAILS_FILE
    ) -> SnapshotInfo:
        """Write catalog details as a JSON array."""
        return self._write([d.model_dump(mode="json") for d in details], file_name)


def export_catalog(store: ResilientStore, base_path: str | Path) -> list[SnapshotInfo]:
    """Dump the stored entries and details to snapshot files."""
    writer = SnapshotWriter(base_path)
    return [
        writer.write_entries(CatalogRepository(store).list_entries()),
        writer.write_details(DetailsRepository(store).list_all()),
    ]


def read_entries(path: str | Path) -> list[CatalogEntry]:
    """
    Load catalog entries from a snapshot file, keeping file order.

    Raises:
        SnapshotError: If the file is missing, is not a JSON array or holds
            an invalid entry.
    """
    path = Path(path).expanduser()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise SnapshotError(f"Snapshot file not found: {path}") from e
    except (OSError, ValueError) as e:
        raise SnapshotError(f"Failed to read snapshot {path}: {e}") from e

    if not isinstance(data, list):
        raise SnapshotError(f"Snapshot {path} is not a JSON array")
    try:
        return [CatalogEntry.model_validate(item) for item in data]
    except ValidationError as e:
        raise SnapshotError(f"Snapshot {path} holds an invalid entry: {e}") from e
