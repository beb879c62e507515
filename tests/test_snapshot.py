"""Tests for snapshot files."""

import json
import os
import stat
from pathlib import Path

import pytest

from flourish.core.schema import CatalogDetails, CatalogEntry
from flourish.db.repositories import CatalogRepository, DetailsRepository
from flourish.ingestion.snapshot import (
    DETAILS_FILE,
    ENTRIES_FILE,
    SNAPSHOT_FILE_MODE,
    SnapshotError,
    SnapshotWriter,
    export_catalog,
    read_entries,
)


class TestSnapshotWriter:
    """Tests for SnapshotWriter."""

    def test_entries_written_in_id_order(self, tmp_path: Path) -> None:
        """Test entries are sorted by id in the file."""
        writer = SnapshotWriter(tmp_path)
        info = writer.write_entries(
            [CatalogEntry(id=3, common_name="C"), CatalogEntry(id=1, common_name="A"), CatalogEntry(id=2)]
        )

        data = json.loads(info.path.read_text(encoding="utf-8"))
        assert [item["id"] for item in data] == [1, 2, 3]
        assert info.record_count == 3
        assert info.path.name == ENTRIES_FILE

    def test_empty_collection(self, tmp_path: Path) -> None:
        """Test an empty collection is written as an empty array."""
        info = SnapshotWriter(tmp_path).write_entries([])
        assert json.loads(info.path.read_text(encoding="utf-8")) == []

    def test_utf8(self, tmp_path: Path) -> None:
        """Test non-ASCII names are written as UTF-8."""
        info = SnapshotWriter(tmp_path).write_entries([CatalogEntry(id=1, common_name="Épervière orangée")])
        assert "Épervière orangée" in info.path.read_bytes().decode("utf-8")

    def test_creates_directory(self, tmp_path: Path) -> None:
        """Test the base directory is created on demand."""
        target = tmp_path / "nested" / "snapshots"
        SnapshotWriter(target).write_entries([CatalogEntry(id=1)])
        assert (target / ENTRIES_FILE).exists()

    def test_no_temp_files_left(self, tmp_path: Path) -> None:
        """Test only the final file remains after a write."""
        SnapshotWriter(tmp_path).write_entries([CatalogEntry(id=1)])
        assert [p.name for p in tmp_path.iterdir()] == [ENTRIES_FILE]

    @pytest.mark.skipif(os.name != "posix", reason="POSIX file modes")
    def test_file_readable_by_others(self, tmp_path: Path) -> None:
        """Test snapshot files are world-readable, not left at the temp file's 0600."""
        info = SnapshotWriter(tmp_path).write_entries([CatalogEntry(id=1)])
        assert stat.S_IMODE(info.path.stat().st_mode) == SNAPSHOT_FILE_MODE

    def test_details(self, tmp_path: Path) -> None:
        """Test details are written with every attribute."""
        info = SnapshotWriter(tmp_path).write_details([CatalogDetails(id=5, watering="Minimum")])
        data = json.loads(info.path.read_text(encoding="utf-8"))
        assert data[0]["watering"] == "Minimum"
        assert data[0]["cycle"] is None
        assert info.path.name == DETAILS_FILE


class TestReadEntries:
    """Tests for read_entries."""

    def test_reads_written_entries(self, tmp_path: Path) -> None:
        """Test entries come back with names, other names and synonyms."""
        entry = CatalogEntry(id=4, common_name="Rose", other_names=["Briar"], synonyms={"Rosa x"})
        info = SnapshotWriter(tmp_path).write_entries([entry])

        assert read_entries(info.path) == [entry]

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test a missing file raises SnapshotError."""
        with pytest.raises(SnapshotError):
            read_entries(tmp_path / "absent.json")

    @pytest.mark.parametrize("content", ["{not json", '{"id": 1}', '[{"id": 0}]', '[{"common_name": "x"}]'])
    def test_corrupt_file(self, tmp_path: Path, content: str) -> None:
        """Test malformed snapshots raise SnapshotError."""
        path = tmp_path / "bad.json"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(SnapshotError):
            read_entries(path)


class TestExportCatalog:
    """Tests for export_catalog."""

    def test_exports_both_tables(self, store, tmp_path: Path) -> None:
        """Test entries and details are dumped from the store."""
        CatalogRepository(store).upsert_entries([CatalogEntry(id=2, common_name="B"), CatalogEntry(id=1)])
        DetailsRepository(store).upsert(CatalogDetails(id=1, common_name="A"))

        written = export_catalog(store, tmp_path)

        assert [info.record_count for info in written] == [2, 1]
        assert [e.id for e in read_entries(tmp_path / ENTRIES_FILE)] == [1, 2]
