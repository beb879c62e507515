"""
Ingestion Pipeline Module
=========================

Drives one sync run against a catalog source: pages through the list
collection (or walks an id range of the detail endpoint), maps the
payloads and upserts them through the repositories while tracking
progress.

A run is synchronous and single-threaded. It ends when the source has no
more pages, the id range is exhausted, the per-run request ceiling is
reached, the cancel token fires or an unrecoverable error occurs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from flourish.core.enums import SyncMode, SyncStatus
from flourish.core.results import Parsed, Skipped
from flourish.core.retry import RetryExhausted, RetryPolicy, fixed_backoff
from flourish.core.schema import CatalogEntry
from flourish.db.repositories import CatalogRepository, DetailsRepository
from flourish.db.store import ResilientStore, StoreUnavailable
from flourish.ingestion.fetcher import (
    CancelToken,
    Clock,
    FetchFailed,
    RateLimitedFetcher,
    RawResponse,
    RunCancelled,
    TransportFailed,
)
from flourish.ingestion.mapping import map_list_item, parse_details_response
from flourish.ingestion.registry import SourceConfig

logger = logging.getLogger(__name__)

DETAIL_ATTEMPTS = 3
DETAIL_RETRY_DELAY_SECONDS = 5.0


class SyncAborted(Exception):
    """Raised when a run stops on an unrecoverable error; carries the partial progress."""

    def __init__(self, message: str, progress: IngestionProgress) -> None:
        super().__init__(message)
        self.progress = progress


@dataclass
class IngestionProgress:
    """Counters of one sync run. Lives only as long as the run."""

    source_name: str
    mode: SyncMode
    start_id: int
    end_id: int
    status: SyncStatus = SyncStatus.PENDING
    requests_issued: int = 0
    requests_in_window: int = 0
    window_started_at: float | None = None
    last_id_processed: int = 0
    total_fetched: int = 0
    total_inserted: int = 0
    total_updated: int = 0
    total_skipped: int = 0
    next_cursor: str | None = None
    errors: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "source_name": self.source_name,
            "mode": self.mode.value,
            "start_id": self.start_id,
            "end_id": self.end_id,
            "status": self.status.value,
            "requests_issued": self.requests_issued,
            "requests_in_window": self.requests_in_window,
            "last_id_processed": self.last_id_processed,
            "total_fetched": self.total_fetched,
            "total_inserted": self.total_inserted,
            "total_updated": self.total_updated,
            "total_skipped": self.total_skipped,
            "next_cursor": self.next_cursor,
            "errors": self.errors,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


def validate_range(start_id: int, end_id: int) -> None:
    """Reject non-positive ids and inverted ranges."""
    if start_id <= 0 or end_id <= 0:
        raise ValueError(f"Ids must be positive, got [{start_id}, {end_id}]")
    if start_id > end_id:
        raise ValueError(f"Inverted id range [{start_id}, {end_id}]")


class IngestionPipeline:
    """
    Sync runner for one catalog source.

    Every call to ``sync_range`` or ``sync_details_range`` is an independent
    run with its own ``IngestionProgress``. Upserts are idempotent, so
    re-running an interrupted range is safe.
    """

    def __init__(
        self,
        store: ResilientStore,
        fetcher: RateLimitedFetcher,
        max_requests_per_run: int | None = None,
        raise_on_failure: bool = False,
        stop_past_end: bool = False,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.source = fetcher.source
        if max_requests_per_run is None:
            max_requests_per_run = self.source.rate_limit.max_requests_per_run
        self.max_requests = max_requests_per_run
        self.raise_on_failure = raise_on_failure
        self.stop_past_end = stop_past_end
        self.catalog = CatalogRepository(store)
        self.details = DetailsRepository(store)
        self._detail_retry = RetryPolicy(
            max_attempts=DETAIL_ATTEMPTS,
            backoff=fixed_backoff(DETAIL_RETRY_DELAY_SECONDS),
            retry_on=(TransportFailed,),
            sleep=fetcher.pause,
        )

    # ------------------------------------------------------------------
    # Run bookkeeping
    # ------------------------------------------------------------------

    def _start(self, mode: SyncMode, start_id: int, end_id: int) -> IngestionProgress:
        validate_range(start_id, end_id)
        progress = IngestionProgress(
            source_name=self.source.name,
            mode=mode,
            start_id=start_id,
            end_id=end_id,
            status=SyncStatus.RUNNING,
            started_at=datetime.now(UTC),
        )
        logger.info(
            f"Starting {mode.value} sync of '{self.source.name}' for ids "
            f"[{start_id}, {end_id}] (ceiling {self.max_requests} requests)"
        )
        return progress

    def _record_window(self, progress: IngestionProgress) -> None:
        progress.requests_in_window = self.fetcher.limiter.requests_in_window
        progress.window_started_at = self.fetcher.limiter.window_start

    def _finish(self, progress: IngestionProgress) -> None:
        progress.completed_at = datetime.now(UTC)
        if progress.started_at:
            progress.duration_seconds = (progress.completed_at - progress.started_at).total_seconds()
        logger.info(
            f"Sync of '{self.source.name}' {progress.status.value}: "
            f"{progress.requests_issued} requests, {progress.total_fetched} fetched, "
            f"{progress.total_inserted} inserted, {progress.total_updated} updated, "
            f"{progress.total_skipped} skipped, last id {progress.last_id_processed}"
        )

    def _fail(self, progress: IngestionProgress, error: Exception) -> None:
        progress.status = SyncStatus.FAILED
        progress.errors.append(str(error))
        logger.exception(f"Sync of '{self.source.name}' aborted: {error}")
        self._finish(progress)
        if self.raise_on_failure:
            raise SyncAborted(str(error), progress) from error

    def _cancel(self, progress: IngestionProgress, error: RunCancelled) -> None:
        progress.status = SyncStatus.CANCELLED
        progress.errors.append(str(error))
        logger.warning(f"Sync of '{self.source.name}' cancelled: {error}")
        self._finish(progress)

    # ------------------------------------------------------------------
    # List mode
    # ------------------------------------------------------------------

    def sync_range(self, start_id: int, end_id: int) -> IngestionProgress:
        """
        Page through the list collection and store entries with ids in range.

        Args:
            start_id: First id to keep (inclusive)
            end_id: Last id to keep (inclusive)

        Returns:
            Progress of the run, including partial counters when it stopped early.

        Raises:
            ValueError: If the range is inverted or not positive.
            SyncAborted: On fetch or store failure when ``raise_on_failure`` is set.
        """
        progress = self._start(SyncMode.LIST, start_id, end_id)
        cursor: str | None = None
        try:
            while True:
                if progress.requests_issued >= self.max_requests:
                    logger.info(f"Request ceiling of {self.max_requests} reached; stopping")
                    progress.next_cursor = cursor
                    break

                page = self.fetcher.fetch_page(cursor)
                progress.requests_issued += 1
                progress.total_fetched += len(page.items)
                self._record_window(progress)

                entries = self._entries_in_range(page.items, start_id, end_id, progress)
                if entries:
                    inserted, updated = self.catalog.upsert_entries(entries)
                    progress.total_inserted += inserted
                    progress.total_updated += updated
                    progress.last_id_processed = max(
                        progress.last_id_processed, max(e.id for e in entries)
                    )
                    logger.info(
                        f"Saved {len(entries)} entries from {page.url.split('?')[0]} "
                        f"(page {page.current_page or '?'}): {inserted} new, {updated} updated"
                    )

                if page.next_cursor is None:
                    logger.info("Last page reached")
                    break
                if self.stop_past_end and self._all_past_end(page.items, end_id):
                    logger.info(f"Page items are all beyond id {end_id}; stopping")
                    break
                cursor = page.next_cursor

            progress.status = SyncStatus.COMPLETED
        except RunCancelled as e:
            progress.next_cursor = cursor
            self._cancel(progress, e)
            return progress
        except (FetchFailed, StoreUnavailable) as e:
            progress.next_cursor = cursor
            self._fail(progress, e)
            return progress

        self._finish(progress)
        return progress

    def _entries_in_range(
        self,
        items: list[dict[str, Any]],
        start_id: int,
        end_id: int,
        progress: IngestionProgress,
    ) -> list[CatalogEntry]:
        entries = []
        for item in items:
            match map_list_item(item):
                case Parsed(value=entry):
                    if start_id <= entry.id <= end_id:
                        entries.append(entry)
                case Skipped(reason=reason):
                    progress.total_skipped += 1
                    logger.warning(f"Skipping list item: {reason}")
        return entries

    @staticmethod
    def _all_past_end(items: list[dict[str, Any]], end_id: int) -> bool:
        ids = [item.get("id") for item in items]
        ints = [i for i in ids if isinstance(i, int) and not isinstance(i, bool)]
        return bool(ints) and len(ints) == len(ids) and min(ints) > end_id

    # ------------------------------------------------------------------
    # Detail mode
    # ------------------------------------------------------------------

    def sync_details_range(self, start_id: int, end_id: int) -> IngestionProgress:
        """
        Fetch and store the detail record of every id in range.

        A bad response for a single id is skipped; the run carries on with
        the next id.

        Raises:
            ValueError: If the range is inverted or not positive, or the
                source has no details endpoint.
            SyncAborted: On store failure when ``raise_on_failure`` is set.
        """
        if not self.source.details_path:
            raise ValueError(f"Source '{self.source.name}' has no details endpoint")
        progress = self._start(SyncMode.DETAILS, start_id, end_id)

        current = start_id
        try:
            while current <= end_id:
                if progress.requests_issued >= self.max_requests:
                    logger.info(
                        f"Request ceiling of {self.max_requests} reached; next id is {current}"
                    )
                    break

                progress.requests_issued += 1
                raw = self._fetch_details(current, progress)
                self._record_window(progress)
                if raw is not None:
                    progress.total_fetched += 1
                    self._store_details(current, raw, progress)
                progress.last_id_processed = current
                current += 1

            progress.status = SyncStatus.COMPLETED
        except RunCancelled as e:
            self._cancel(progress, e)
            return progress
        except StoreUnavailable as e:
            self._fail(progress, e)
            return progress

        self._finish(progress)
        return progress

    def _fetch_details(self, plant_id: int, progress: IngestionProgress) -> RawResponse | None:
        url = self.source.details_url(plant_id)
        try:
            return self._detail_retry.call(
                lambda: self.fetcher.fetch_raw(url), description=f"fetch details {plant_id}"
            )
        except RetryExhausted as e:
            reason = f"no response after {e.attempts} attempts: {e.last_error}"
        except FetchFailed as e:
            reason = str(e)
        progress.total_skipped += 1
        progress.errors.append(f"{plant_id}: {reason}")
        logger.warning(f"Skipping details {plant_id}: {reason}")
        return None

    def _store_details(self, plant_id: int, raw: RawResponse, progress: IngestionProgress) -> None:
        match parse_details_response(raw.text):
            case Parsed(value=details) if details.id == plant_id:
                if self.details.upsert(details):
                    progress.total_inserted += 1
                else:
                    progress.total_updated += 1
                logger.debug(f"Stored details {plant_id}: {details.common_name or '-'}")
            case Parsed(value=details):
                progress.total_skipped += 1
                logger.warning(f"Skipping details {plant_id}: response carries id {details.id}")
            case Skipped(reason=reason):
                progress.total_skipped += 1
                logger.warning(f"Skipping details {plant_id}: {reason}")


def create_pipeline(
    source: SourceConfig,
    store: ResilientStore,
    user_agent: str = "Flourish/0.1",
    timeout: float = 10.0,
    clock: Clock | None = None,
    cancel_token: CancelToken | None = None,
    **options: Any,
) -> IngestionPipeline:
    """Build a pipeline with its own fetcher for ``source``."""
    fetcher = RateLimitedFetcher(
        source,
        clock=clock,
        cancel_token=cancel_token,
        user_agent=user_agent,
        timeout=timeout,
    )
    return IngestionPipeline(store, fetcher, **options)
