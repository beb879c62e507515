"""Pydantic v2 models for the Flourish plant catalog and user library.

These models define:
- CatalogEntry (the searchable species index)
- CatalogDetails (care attributes for a species, mostly optional)
- LibraryEntry (a user's plant with its watering schedule)
"""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class CatalogEntry(BaseModel):
    """
    Species index record sourced from an upstream botanical API.

    Identity is the upstream id, which is stable across syncs.
    """

    id: int = Field(gt=0)
    common_name: str = ""
    scientific_name: str = ""
    other_names: list[str] = Field(default_factory=list)
    family: str | None = None
    genus: str | None = None
    image_url: str | None = None
    synonyms: set[str] = Field(default_factory=set)

    @field_validator("common_name", "scientific_name", mode="before")
    @classmethod
    def none_to_empty(cls, v: str | None) -> str:
        return "" if v is None else str(v).strip()

    @property
    def other_names_text(self) -> str:
        """Other names joined into the single field used for searching."""
        return ", ".join(self.other_names)

    @property
    def display_name(self) -> str:
        return self.common_name or self.scientific_name or f"#{self.id}"


class CatalogDetails(BaseModel):
    """
    Care attributes for one catalog species.

    Only ``id`` is required. Whether an attribute is present matters to the
    detail views, see ``available_fields``. Nested upstream structures
    (lists, objects) are kept as compact JSON strings.
    """

    model_config = ConfigDict(extra="ignore")

    id: int = Field(gt=0)

    # Names
    common_name: str | None = None
    scientific_name: str | None = None
    other_names: str | None = None
    family: str | None = None
    genus: str | None = None
    species_epithet: str | None = None

    # Care
    type: str | None = None
    cycle: str | None = None
    watering: str | None = None
    sunlight: str | None = None  # JSON array
    care_level: str | None = None
    maintenance: str | None = None
    growth_rate: str | None = None
    care_guides: str | None = None
    soil: str | None = None  # JSON array
    hardiness_min: str | None = None
    hardiness_max: str | None = None
    hardiness_location_url: str | None = None
    pruning_month: str | None = None  # JSON array
    pruning_count: str | None = None  # JSON object
    propagation: str | None = None  # JSON array
    dimensions: str | None = None  # JSON object
    origin: str | None = None  # JSON array

    # Seasons and anatomy
    flowering_season: str | None = None
    harvest_season: str | None = None
    attracts: str | None = None  # JSON array
    pest_susceptibility: str | None = None  # JSON array
    plant_anatomy: str | None = None  # JSON array
    description: str | None = None

    # Flags
    indoor: bool | None = None
    tropical: bool | None = None
    flowers: bool | None = None
    fruits: bool | None = None
    edible_fruit: bool | None = None
    edible_leaf: bool | None = None
    cuisine: bool | None = None
    medicinal: bool | None = None
    poisonous_to_humans: bool | None = None
    poisonous_to_pets: bool | None = None
    drought_tolerant: bool | None = None
    salt_tolerant: bool | None = None
    thorny: bool | None = None
    invasive: bool | None = None
    cones: bool | None = None
    seeds: bool | None = None
    leaf: bool | None = None

    # Default image
    image_license_name: str | None = None
    image_license_url: str | None = None
    image_original_url: str | None = None
    image_regular_url: str | None = None
    image_medium_url: str | None = None
    image_small_url: str | None = None
    image_thumbnail_url: str | None = None

    def available_fields(self) -> list[str]:
        """
        Names of the attributes that carry a value.

        ``id`` is always excluded. Empty strings count as absent.

        Returns:
            Field names in declaration order.
        """
        available = []
        for name in type(self).model_fields:
            if name == "id":
                continue
            value = getattr(self, name)
            if value is None or value == "":
                continue
            available.append(name)
        return available


class LibraryEntry(BaseModel):
    """
    A plant in a user's library with its watering schedule.

    ``next_watering`` is always ``last_watered`` plus the watering frequency.
    """

    id: int | None = None
    owner_id: int
    plant_id: int = Field(gt=0)
    watering_frequency_days: int = Field(gt=0)
    last_watered: datetime
    next_watering: datetime
    hashtags: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def schedule_consistent(self) -> LibraryEntry:
        expected = self.last_watered + timedelta(days=self.watering_frequency_days)
        if self.next_watering != expected:
            raise ValueError(
                "next_watering must equal last_watered + watering_frequency_days "
                f"({expected.isoformat()}), got {self.next_watering.isoformat()}"
            )
        return self
