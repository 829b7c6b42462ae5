"""Bhandara Finder: a local store for community food-distribution events."""

from .app import BhandaraApp
from .event_store import EventStore
from .exceptions import (
    BhandaraError,
    ImageEncodingError,
    PersistenceWarning,
    StorageError,
    StorageQuotaExceededError,
    StorageReadError,
    StorageWriteError,
    SubmissionError,
)
from .identity import IdentityProvider, can_delete
from .models.config import BhandaraConfig
from .models.event import Event

__version__ = "0.1.0"

__all__ = [
    "BhandaraApp",
    "BhandaraConfig",
    "BhandaraError",
    "Event",
    "EventStore",
    "IdentityProvider",
    "ImageEncodingError",
    "PersistenceWarning",
    "StorageError",
    "StorageQuotaExceededError",
    "StorageReadError",
    "StorageWriteError",
    "SubmissionError",
    "can_delete",
]
