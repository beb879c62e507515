"""
Flourish Ingestion Framework
============================

This package pulls species data from upstream botanical APIs into the
local catalog.

Pipeline Stages:
1. Configure - Sources and their request quotas come from sources.yaml
2. Fetch - The fetcher pages through the API under a sliding-window quota
3. Map - Payloads become catalog entries or details, bad records are skipped
4. Persist - Entries and details are upserted through the resilient store
5. Snapshot - The catalog is exported to JSON files for the search index
"""

from flourish.ingestion.registry import (
    GlobalConfig,
    RateLimitConfig,
    SourceConfig,
    SourceRegistry,
    load_registry,
)
from flourish.ingestion.fetcher import (
    CancelToken,
    FetchFailed,
    Page,
    RateLimitedFetcher,
    RawResponse,
    RunCancelled,
    SlidingWindowLimiter,
    SystemClock,
    TransportFailed,
)
from flourish.ingestion.mapping import (
    map_details,
    map_list_item,
    parse_details_response,
)
from flourish.ingestion.pipeline import (
    IngestionPipeline,
    IngestionProgress,
    SyncAborted,
    create_pipeline,
)
from flourish.ingestion.snapshot import (
    SnapshotError,
    SnapshotWriter,
    export_catalog,
    read_entries,
)

__all__ = [
    # Registry
    "GlobalConfig",
    "RateLimitConfig",
    "SourceConfig",
    "SourceRegistry",
    "load_registry",
    # Fetcher
    "CancelToken",
    "FetchFailed",
    "Page",
    "RateLimitedFetcher",
    "RawResponse",
    "RunCancelled",
    "SlidingWindowLimiter",
    "SystemClock",
    "TransportFailed",
    # Mapping
    "map_details",
    "map_list_item",
    "parse_details_response",
    # Pipeline
    "IngestionPipeline",
    "IngestionProgress",
    "SyncAborted",
    "create_pipeline",
    # Snapshot
    "SnapshotError",
    "SnapshotWriter",
    "export_catalog",
    "read_entries",
]
