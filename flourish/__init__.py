"""Flourish - plant catalog ingestion, search and watering schedules."""

__version__ = "0.1.0"
