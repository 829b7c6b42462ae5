"""Application context wiring storage, events and identity together.

A single :class:`BhandaraApp` is created at startup and handed to whatever
renders the UI. It owns the background refresh and stops it on teardown.
"""

from typing import Any, List, Mapping, Optional

import structlog

from bhandara.event_store import Clock, EventStore
from bhandara.identity import IdentityProvider, can_delete
from bhandara.logging_config import configure_logging
from bhandara.models.config import BhandaraConfig
from bhandara.models.event import Event
from bhandara.storage import KeyValueStorage, create_storage
from bhandara.submission import build_event


logger = structlog.get_logger(__name__)


class BhandaraApp:
    """Owns the event store and identity of one profile."""

    def __init__(
        self,
        config: Optional[BhandaraConfig] = None,
        storage: Optional[KeyValueStorage] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the application context.

        Args:
            config: Application configuration; read from the environment if omitted
            storage: Storage to use instead of the configured backend
            clock: Time source shared with the event store
        """
        self.config = config or BhandaraConfig()
        self.storage = storage if storage is not None else create_storage(self.config)
        self.store = EventStore.from_config(self.storage, self.config, clock=clock)
        self.identity = IdentityProvider(self.storage, key=self.config.identity_key)
        self._clock = clock
        self.logger = logger.bind(component="bhandara_app")

    @classmethod
    def from_env(cls) -> "BhandaraApp":
        """Build the app from environment settings and configure logging."""
        config = BhandaraConfig()
        configure_logging(config.log_level)
        return cls(config)

    async def start(self) -> None:
        """Load events, resolve the identity and start the periodic refresh."""
        self.identity.get_or_create()
        events = self.store.load()
        self.store.start_refresh()
        self.logger.info("Application started", events=len(events))

    async def stop(self) -> None:
        """Cancel the periodic refresh."""
        await self.store.stop_refresh()
        self.logger.info("Application stopped")

    async def __aenter__(self) -> "BhandaraApp":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def owner_id(self) -> str:
        return self.identity.get_or_create()

    @property
    def events(self) -> List[Event]:
        return self.store.events

    def submit(self, form: Mapping[str, Any]) -> Event:
        """Validate the creation form and add the resulting event.

        Raises:
            SubmissionError: if the form is incomplete; nothing is stored
        """
        now = self._clock() if self._clock else None
        event = build_event(
            form, self.owner_id, now=now, max_image_bytes=self.config.max_image_bytes
        )
        self.store.add(event)
        return event

    def can_delete(self, event: Event) -> bool:
        return can_delete(event, self.owner_id)

    def delete(self, event_id: str) -> bool:
        """Delete an event owned by this profile.

        Returns False, leaving the collection untouched, when the event
        does not exist or belongs to someone else.
        """
        event = self.store.get(event_id)
        if event is None:
            self.logger.debug("Delete ignored, event not found", event_id=event_id)
            return False
        if not self.can_delete(event):
            self.logger.warning("Delete denied, not the owner", event_id=event_id)
            return False

        self.store.remove(event_id)
        return True
