"""Shared fixtures: temporary SQLite stores, a fake clock and source configs."""

import tempfile
from pathlib import Path

import pytest

from flourish.core.enums import ApiFlavor
from flourish.db.store import ResilientStore
from flourish.ingestion.registry import RateLimitConfig, SourceConfig


class FakeClock:
    """Clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.current

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.current += seconds

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def db_url(temp_db_path: Path) -> str:
    return f"sqlite:///{temp_db_path}"


@pytest.fixture
def store(db_url: str):
    """Create a store with all tables."""
    store = ResilientStore(db_url)
    store.create_schema()
    yield store
    store.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def trefle_source() -> SourceConfig:
    """Trefle-style source: links.next pagination, token in ``token``."""
    return SourceConfig(
        name="trefle",
        base_url="https://trefle.test",
        list_path="/api/v1/plants",
        details_path="/api/v1/plants",
        flavor=ApiFlavor.TREFLE,
        api_token="secret",
        token_param="token",
        rate_limit=RateLimitConfig(
            requests_per_window=100,
            window_seconds=60.0,
            cooldown_seconds=10.0,
            page_delay_seconds=1.0,
            max_requests_per_run=99,
        ),
    )


@pytest.fixture
def perenual_source() -> SourceConfig:
    """Perenual-style source: current_page/last_page pagination, token in ``key``."""
    return SourceConfig(
        name="perenual",
        base_url="https://perenual.test",
        list_path="/api/v2/species-list",
        details_path="/api/v2/species/details",
        flavor=ApiFlavor.PERENUAL,
        api_token="k3y",
        token_param="key",
        rate_limit=RateLimitConfig(
            requests_per_window=99,
            window_seconds=60.0,
            cooldown_seconds=10.0,
            page_delay_seconds=1.0,
            max_requests_per_run=99,
        ),
    )
