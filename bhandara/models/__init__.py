"""Data and configuration models."""

from .config import BhandaraConfig, StorageBackend
from .event import Event, format_event_time
from .validation import ValidationResult

__all__ = [
    "BhandaraConfig",
    "Event",
    "StorageBackend",
    "ValidationResult",
    "format_event_time",
]
