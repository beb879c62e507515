"""Enums for catalog ingestion and plant care fields."""

from enum import Enum


class WateringLabel(str, Enum):
    """Qualitative watering need reported by the upstream catalog."""

    FREQUENT = "frequent"
    AVERAGE = "average"
    MINIMUM = "minimum"


class ApiFlavor(str, Enum):
    """Payload dialect of an upstream catalog API."""

    TREFLE = "trefle"
    PERENUAL = "perenual"


class SyncMode(str, Enum):
    """Ingestion mode of a sync run."""

    LIST = "list"
    DETAILS = "details"


class SyncStatus(str, Enum):
    """Status of a sync run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
