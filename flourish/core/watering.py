"""Watering intervals and the watering gauge."""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from flourish.core.enums import WateringLabel
from flourish.core.schema import LibraryEntry

LABEL_INTERVALS: dict[str, int] = {
    WateringLabel.FREQUENT.value: 7,
    WateringLabel.MINIMUM.value: 14,
}

DEFAULT_INTERVAL_DAYS = 10

GAUGE_FULL = 100.0
GAUGE_FLOOR = -100.0


def interval_for_label(label: str | None) -> int:
    """
    Map a watering label to a watering interval in days.

    Frequent is 7 days, Minimum is 14 days, anything else (Average,
    unknown values, None) falls back to 10 days. Matching ignores case
    and surrounding whitespace.

    Args:
        label: Watering label from the catalog details.

    Returns:
        Interval in days.
    """
    if label is None:
        return DEFAULT_INTERVAL_DAYS
    return LABEL_INTERVALS.get(str(label).strip().lower(), DEFAULT_INTERVAL_DAYS)


def _round_half_up(value: float) -> float:
    return float(math.floor(value + 0.5))


def compute_gauge(last_watered: datetime, next_watering: datetime, now: datetime) -> float:
    """
    Compute the watering gauge for a schedule.

    The gauge is 100 right after watering, 0 on the due date and negative
    once overdue. It never drops below -100 but it is not capped at 100:
    a ``now`` earlier than ``last_watered`` yields values above 100, and
    callers clamp for display if they need to.

    Args:
        last_watered: When the plant was last watered.
        next_watering: When the next watering is due.
        now: Reference time.

    Returns:
        Gauge value rounded to a whole number.

    Raises:
        ValueError: If next_watering is before last_watered.
    """
    if next_watering == last_watered:
        return GAUGE_FULL

    total = (next_watering - last_watered).total_seconds()
    if total < 0:
        raise ValueError(
            f"next_watering ({next_watering.isoformat()}) is before "
            f"last_watered ({last_watered.isoformat()})"
        )
    elapsed = (now - last_watered).total_seconds()

    gauge = GAUGE_FULL * (1 - elapsed / total)
    if gauge < GAUGE_FLOOR:
        gauge = GAUGE_FLOOR
    return _round_half_up(gauge)


def new_schedule(frequency_days: int, now: datetime) -> tuple[datetime, datetime]:
    """Return ``(last_watered, next_watering)`` for a plant watered at ``now``."""
    if frequency_days <= 0:
        raise ValueError(f"Watering frequency must be positive, got {frequency_days}")
    return now, now + timedelta(days=frequency_days)


class WateringScheduler:
    """Watering rules used by the library service and the reminder job."""

    def interval_for_label(self, label: str | None) -> int:
        return interval_for_label(label)

    def compute_gauge(
        self, last_watered: datetime, next_watering: datetime, now: datetime
    ) -> float:
        return compute_gauge(last_watered, next_watering, now)

    def mark_watered(self, entry: LibraryEntry, now: datetime) -> LibraryEntry:
        """
        Reset an entry's schedule as watered at ``now``.

        Uses the frequency stored on the entry, not the current label of
        the species.
        """
        last_watered, next_watering = new_schedule(entry.watering_frequency_days, now)
        return entry.model_copy(
            update={"last_watered": last_watered, "next_watering": next_watering}
        )

    def gauge_for(self, entry: LibraryEntry, now: datetime) -> float:
        return compute_gauge(entry.last_watered, entry.next_watering, now)
