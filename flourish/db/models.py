"""SQLAlchemy ORM models for the Flourish database.

These models define the tables for:
- CatalogEntryDB (species index, keyed by upstream id)
- CatalogDetailsDB (care attributes, one-to-one with the index)
- LibraryEntryDB (plants in user libraries)
"""

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class CatalogEntryDB(Base):
    """
    Database model for catalog index entries.

    The primary key is the id assigned by the upstream API, never by us.
    """

    __tablename__ = "catalog_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    common_name: Mapped[str] = mapped_column(String(255), default="", index=True)
    scientific_name: Mapped[str] = mapped_column(String(255), default="", index=True)
    other_names_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    family: Mapped[str | None] = mapped_column(String(100), nullable=True)
    genus: Mapped[str | None] = mapped_column(String(100), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    synonyms_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    def __repr__(self) -> str:
        return f"<CatalogEntryDB(id={self.id}, name='{self.common_name}')>"


class CatalogDetailsDB(Base):
    """
    Database model for catalog details.

    Every column except the id is nullable; nested upstream values are
    stored as JSON text.
    """

    __tablename__ = "catalog_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)

    common_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scientific_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    other_names: Mapped[str | None] = mapped_column(Text, nullable=True)
    family: Mapped[str | None] = mapped_column(String(100), nullable=True)
    genus: Mapped[str | None] = mapped_column(String(100), nullable=True)
    species_epithet: Mapped[str | None] = mapped_column(String(100), nullable=True)

    type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cycle: Mapped[str | None] = mapped_column(String(100), nullable=True)
    watering: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sunlight: Mapped[str | None] = mapped_column(Text, nullable=True)
    care_level: Mapped[str | None] = mapped_column(String(50), nullable=True)
    maintenance: Mapped[str | None] = mapped_column(String(50), nullable=True)
    growth_rate: Mapped[str | None] = mapped_column(String(50), nullable=True)
    care_guides: Mapped[str | None] = mapped_column(Text, nullable=True)
    soil: Mapped[str | None] = mapped_column(Text, nullable=True)
    hardiness_min: Mapped[str | None] = mapped_column(String(20), nullable=True)
    hardiness_max: Mapped[str | None] = mapped_column(String(20), nullable=True)
    hardiness_location_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    pruning_month: Mapped[str | None] = mapped_column(Text, nullable=True)
    pruning_count: Mapped[str | None] = mapped_column(Text, nullable=True)
    propagation: Mapped[str | None] = mapped_column(Text, nullable=True)
    dimensions: Mapped[str | None] = mapped_column(Text, nullable=True)
    origin: Mapped[str | None] = mapped_column(Text, nullable=True)

    flowering_season: Mapped[str | None] = mapped_column(String(100), nullable=True)
    harvest_season: Mapped[str | None] = mapped_column(String(100), nullable=True)
    attracts: Mapped[str | None] = mapped_column(Text, nullable=True)
    pest_susceptibility: Mapped[str | None] = mapped_column(Text, nullable=True)
    plant_anatomy: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    indoor: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    tropical: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    flowers: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    fruits: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    edible_fruit: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    edible_leaf: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    cuisine: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    medicinal: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    poisonous_to_humans: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    poisonous_to_pets: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    drought_tolerant: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    salt_tolerant: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    thorny: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    invasive: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    cones: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    seeds: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    leaf: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    image_license_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    image_license_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    image_original_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    image_regular_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    image_medium_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    image_small_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    image_thumbnail_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    def __repr__(self) -> str:
        return f"<CatalogDetailsDB(id={self.id}, name='{self.common_name}')>"


class LibraryEntryDB(Base):
    """Database model for a plant in a user's library."""

    __tablename__ = "library_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    plant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    watering_frequency_days: Mapped[int] = mapped_column(Integer, nullable=False)
    last_watered: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    next_watering: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    hashtags_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array

    def __repr__(self) -> str:
        return f"<LibraryEntryDB(id={self.id}, owner={self.owner_id}, plant={self.plant_id})>"
