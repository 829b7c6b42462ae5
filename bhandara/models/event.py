"""Event-related data models."""

from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def to_iso_timestamp(value: datetime) -> str:
    """Render an instant as ISO-8601 UTC with milliseconds, e.g. 2024-06-01T10:00:00.000Z."""
    utc_value = value.astimezone(timezone.utc)
    return utc_value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_event_time(value: datetime, tz: Optional[tzinfo] = None) -> str:
    """Format an event time for display, e.g. ``Jun 1, 2024, 6:30 PM``.

    The instant is shown in ``tz``, or in local time when ``tz`` is None.
    """
    local = value.astimezone(tz)
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{local:%b} {local.day}, {local.year}, {hour}:{local.minute:02d} {meridiem}"


class Event(BaseModel):
    """A bhandara: one community food-distribution event.

    Field names follow Python conventions; the persisted record uses the
    aliases ``image_url`` and ``date_time``. Events are immutable once created.

    Only ``date_time`` is required to read a stored record: numeric ids are
    kept as strings and missing or null text fields become empty strings.
    Content rules for new events live in :mod:`bhandara.submission`.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, coerce_numbers_to_str=True)

    id: str = ""
    title: str = ""
    description: str = ""
    location: str = ""
    image_data: str = Field(default="", alias="image_url")
    event_time: datetime = Field(alias="date_time")
    owner_id: str = ""

    @field_validator("id", "title", "description", "location", "image_data", "owner_id", mode="before")
    @classmethod
    def _null_to_empty(cls, value):
        return "" if value is None else value

    @field_validator("event_time")
    @classmethod
    def _normalize_event_time(cls, value: datetime) -> datetime:
        # Naive values come from local date/time inputs
        if value.tzinfo is None:
            return value.astimezone()
        return value

    @field_serializer("event_time")
    def _serialize_event_time(self, value: datetime) -> str:
        return to_iso_timestamp(value)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Event":
        """Build an event from its persisted JSON record."""
        return cls.model_validate(record)

    def to_record(self) -> Dict[str, Any]:
        """Return the persisted JSON record for this event."""
        return self.model_dump(mode="json", by_alias=True)

    def is_expired(self, boundary: datetime) -> bool:
        """True when the event starts strictly before ``boundary``."""
        return self.event_time < boundary

    def display_time(self, tz: Optional[tzinfo] = None) -> str:
        """Human readable event time."""
        return format_event_time(self.event_time, tz)

    def __str__(self) -> str:
        return f"{self.title} @ {self.location} ({self.display_time()})"
