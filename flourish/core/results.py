"""Explicit outcome types for lookups and payload mapping.

Lookups return ``Found | NotFound`` and payload mapping returns
``Parsed | Skipped`` so that "missing" and "skip this record" are ordinary
branches for the caller instead of exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Found(Generic[T]):
    """A lookup that produced a value."""

    value: T

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class NotFound:
    """A lookup that produced nothing."""

    key: Any = None

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class Parsed(Generic[T]):
    """A payload that mapped cleanly into a domain value."""

    value: T


@dataclass(frozen=True)
class Skipped:
    """A payload that was rejected, with the reason it was skipped."""

    reason: str


LookupResult = Found[T] | NotFound
MappingResult = Parsed[T] | Skipped
