"""Library service for a user's plants and their watering schedules.

This service provides business logic for:
- Adding catalog species to a user's library
- Marking plants as watered and reading their watering gauge
- Building watering reminders for plants that are nearly due
- Tagging library entries with hashtags
"""

import logging
from datetime import UTC, datetime

from flourish.core.results import Found, NotFound
from flourish.core.schema import CatalogDetails, LibraryEntry
from flourish.core.watering import WateringScheduler, new_schedule
from flourish.db.repositories import CatalogRepository, DetailsRepository, LibraryRepository
from flourish.db.store import ResilientStore

logger = logging.getLogger(__name__)

# Gauge value under which a plant gets a reminder
DEFAULT_REMINDER_THRESHOLD = 20.0


def naive_utc(value: datetime) -> datetime:
    """Library timestamps are stored as naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def utc_now() -> datetime:
    return naive_utc(datetime.now(UTC))


class LibraryService:
    """Service for managing the plants in users' libraries."""

    def __init__(self, store: ResilientStore, scheduler: WateringScheduler | None = None):
        """
        Initialize the library service.

        Args:
            store: Store holding the catalog and the libraries
            scheduler: Watering rules (optional, defaults to the standard rules)
        """
        self.store = store
        self.scheduler = scheduler or WateringScheduler()
        self.library = LibraryRepository(store)
        self.details = DetailsRepository(store)
        self.catalog = CatalogRepository(store)

    # =========================================================================
    # Library Entries
    # =========================================================================

    def add_plant(
        self, owner_id: int, plant_id: int, now: datetime | None = None
    ) -> Found[LibraryEntry] | NotFound:
        """
        Add a species to an owner's library, watered as of ``now``.

        The watering frequency is derived from the species' watering label.

        Args:
            owner_id: Owner of the library
            plant_id: Catalog id of the species
            now: Time of the first watering (defaults to the current time)

        Returns:
            Found with the stored entry, or NotFound if the species has no details
        """
        match self.details.get(plant_id):
            case Found(value=details):
                pass
            case _:
                logger.info(f"Cannot add plant {plant_id} for owner {owner_id}: no details stored")
                return NotFound(plant_id)

        frequency = self.scheduler.interval_for_label(details.watering)
        last_watered, next_watering = new_schedule(frequency, naive_utc(now or utc_now()))
        entry = self.library.add(
            LibraryEntry(
                owner_id=owner_id,
                plant_id=plant_id,
                watering_frequency_days=frequency,
                last_watered=last_watered,
                next_watering=next_watering,
            )
        )
        logger.info(
            f"Added plant {plant_id} to library of owner {owner_id} "
            f"(entry {entry.id}, every {frequency} days)"
        )
        return Found(entry)

    def get_entry(self, entry_id: int) -> Found[LibraryEntry] | NotFound:
        return self.library.get(entry_id)

    def entries_for_owner(self, owner_id: int) -> list[LibraryEntry]:
        """Get all library entries of an owner, oldest first."""
        return self.library.list_for_owner(owner_id)

    def remove_plant(self, entry_id: int) -> bool:
        """
        Remove an entry from its library.

        Returns:
            True if the entry existed
        """
        removed = self.library.delete(entry_id)
        if removed:
            logger.info(f"Removed library entry {entry_id}")
        return removed

    def details_for_entry(self, entry_id: int) -> Found[CatalogDetails] | NotFound:
        """Get the species details behind a library entry."""
        match self.library.get(entry_id):
            case Found(value=entry):
                return self.details.get(entry.plant_id)
            case _:
                return NotFound(entry_id)

    # =========================================================================
    # Watering
    # =========================================================================

    def water_plant(
        self, entry_id: int, now: datetime | None = None
    ) -> Found[LibraryEntry] | NotFound:
        """Mark an entry as watered at ``now`` and store the new schedule."""
        match self.library.get(entry_id):
            case Found(value=entry):
                watered = self.scheduler.mark_watered(entry, naive_utc(now or utc_now()))
                self.library.update_watering(watered)
                logger.debug(f"Entry {entry_id} watered, next watering {watered.next_watering}")
                return Found(watered)
            case _:
                return NotFound(entry_id)

    def gauge_for(self, entry_id: int, now: datetime | None = None) -> Found[float] | NotFound:
        """Watering gauge of an entry at ``now``."""
        match self.library.get(entry_id):
            case Found(value=entry):
                return Found(self.scheduler.gauge_for(entry, naive_utc(now or utc_now())))
            case _:
                return NotFound(entry_id)

    def due_notifications(
        self,
        owner_id: int,
        now: datetime | None = None,
        threshold: float = DEFAULT_REMINDER_THRESHOLD,
    ) -> list[str]:
        """
        Reminder messages for an owner's plants whose gauge is below ``threshold``.

        Returns:
            One message per plant, most urgent first
        """
        now = naive_utc(now or utc_now())
        due: list[tuple[float, str]] = []
        for entry in self.library.list_for_owner(owner_id):
            gauge = self.scheduler.gauge_for(entry, now)
            if gauge >= threshold:
                continue
            name = self._plant_name(entry.plant_id)
            if gauge < 0:
                message = f"{name} is overdue for watering ({gauge:.0f}%)"
            else:
                message = f"{name} needs water soon ({gauge:.0f}%)"
            due.append((gauge, message))
        due.sort(key=lambda pair: pair[0])
        return [message for _, message in due]

    def _plant_name(self, plant_id: int) -> str:
        match self.details.get(plant_id):
            case Found(value=details) if details.common_name:
                return details.common_name
        match self.catalog.get_entry(plant_id):
            case Found(value=entry):
                return entry.display_name
        return f"Plant #{plant_id}"

    # =========================================================================
    # Hashtags
    # =========================================================================

    def _owned_entry(self, owner_id: int, entry_id: int) -> LibraryEntry | None:
        match self.library.get(entry_id):
            case Found(value=entry) if entry.owner_id == owner_id:
                return entry
        return None

    def add_hashtag(self, owner_id: int, entry_id: int, hashtag: str) -> bool:
        """
        Tag an owner's library entry.

        Returns:
            True if the tag was added, False if the entry is unknown, belongs
            to another owner or already carries the tag
        """
        hashtag = hashtag.strip()
        entry = self._owned_entry(owner_id, entry_id)
        if entry is None or not hashtag or hashtag in entry.hashtags:
            return False
        self.library.update_hashtags(entry_id, [*entry.hashtags, hashtag])
        return True

    def remove_hashtag(self, owner_id: int, entry_id: int, hashtag: str) -> bool:
        """Remove a tag; False if the entry is unknown, not owned or untagged."""
        hashtag = hashtag.strip()
        entry = self._owned_entry(owner_id, entry_id)
        if entry is None or hashtag not in entry.hashtags:
            return False
        self.library.update_hashtags(entry_id, [t for t in entry.hashtags if t != hashtag])
        return True

    def hashtags(self, owner_id: int, entry_id: int) -> list[str]:
        entry = self._owned_entry(owner_id, entry_id)
        return list(entry.hashtags) if entry else []
