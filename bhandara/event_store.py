"""Event store: the persisted collection of bhandaras.

The whole collection lives as one JSON array under a single storage key.
Reads drop events whose day has passed and compact the stored array when
anything was dropped, so expired records never accumulate.
"""

import asyncio
import json
import warnings
from datetime import datetime
from typing import Callable, List, Optional

import structlog
from pydantic import ValidationError

from bhandara.exceptions import PersistenceWarning, StorageReadError, StorageWriteError
from bhandara.models.config import BhandaraConfig
from bhandara.models.event import Event
from bhandara.storage import KeyValueStorage


logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]
Listener = Callable[[List[Event]], None]

DEFAULT_EVENTS_KEY = "bhandaras"
DEFAULT_REFRESH_INTERVAL_MS = 60000


def local_now() -> datetime:
    """Current time as an aware datetime in the local timezone."""
    return datetime.now().astimezone()


def start_of_day(moment: datetime) -> datetime:
    """Midnight at the start of ``moment``'s calendar day, in its own timezone."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


class EventStore:
    """Owns the in-memory and persisted collection of events.

    All mutations happen on one thread (or one event loop), so the
    collection needs no locking. Several stores sharing one storage key
    overwrite each other: the last write wins and nothing is merged.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str = DEFAULT_EVENTS_KEY,
        refresh_interval_ms: int = DEFAULT_REFRESH_INTERVAL_MS,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the event store.

        Args:
            storage: Key-value storage holding the collection
            key: Storage key of the JSON array
            refresh_interval_ms: Period of the background refresh
            clock: Returns "now"; defaults to the local wall clock
        """
        if refresh_interval_ms <= 0:
            raise ValueError("refresh_interval_ms must be positive")

        self.storage = storage
        self.key = key
        self.refresh_interval_ms = refresh_interval_ms
        self._clock = clock or local_now
        self._events: List[Event] = []
        self._listeners: List[Listener] = []
        self._refresh_task: Optional[asyncio.Task] = None
        # False while the latest write of the collection failed
        self.last_persist_ok = True
        self.logger = logger.bind(component="event_store", key=key)

    @classmethod
    def from_config(
        cls, storage: KeyValueStorage, config: BhandaraConfig, clock: Optional[Clock] = None
    ) -> "EventStore":
        return cls(
            storage,
            key=config.events_key,
            refresh_interval_ms=config.refresh_interval_ms,
            clock=clock,
        )

    @property
    def events(self) -> List[Event]:
        """Current collection, in insertion order."""
        return list(self._events)

    def get(self, event_id: str) -> Optional[Event]:
        for event in self._events:
            if event.id == event_id:
                return event
        return None

    def start_of_today(self) -> datetime:
        """Expiry boundary: local midnight of the current day."""
        return start_of_day(self._clock())

    def add_listener(self, listener: Listener) -> None:
        """Call ``listener`` with the new collection whenever it changes."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def load(self) -> List[Event]:
        """Read the persisted collection, dropping expired events.

        Missing or unparsable payloads count as an empty collection. When
        any record is dropped (expired, or without a readable date_time)
        the stored array is rewritten without it.
        """
        records = self._read_records()
        boundary = self.start_of_today()

        events: List[Event] = []
        expired = 0
        malformed = 0
        for record in records:
            try:
                event = Event.from_record(record)
            except ValidationError as e:
                malformed += 1
                self.logger.warning("Dropping event record without a readable date_time",
                                    error_count=e.error_count())
                continue

            if event.is_expired(boundary):
                expired += 1
                continue
            events.append(event)

        if expired or malformed:
            self.logger.info(
                "Compacting stored events",
                expired=expired,
                malformed=malformed,
                remaining=len(events),
                boundary=boundary.isoformat(),
            )
            self._persist(events)

        if self._replace(events):
            self._notify()
        return self.events

    def add(self, event: Event) -> List[Event]:
        """Append ``event`` and persist the whole collection.

        The caller supplies a unique id and the owner id; nothing is
        validated here. Check :attr:`last_persist_ok` to learn whether
        the write reached storage.
        """
        self._replace([*self._events, event])
        self._persist(self._events)
        self.logger.info("Event added", event_id=event.id, count=len(self._events))
        self._notify()
        return self.events

    def remove(self, event_id: str) -> List[Event]:
        """Remove the event with ``event_id``; unknown ids are a no-op."""
        remaining = [event for event in self._events if event.id != event_id]
        if len(remaining) == len(self._events):
            self.logger.debug("Remove ignored, event not found", event_id=event_id)
            return self.events

        self._replace(remaining)
        self._persist(self._events)
        self.logger.info("Event removed", event_id=event_id, count=len(self._events))
        self._notify()
        return self.events

    # Background refresh

    @property
    def refreshing(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def start_refresh(self) -> asyncio.Task:
        """Start re-running :meth:`load` every ``refresh_interval_ms``.

        Must be called from a running event loop. Calling it again while
        the task is alive returns the existing task.
        """
        if self.refreshing:
            return self._refresh_task

        self._refresh_task = asyncio.create_task(self._refresh_loop(), name="bhandara-refresh")
        self.logger.info("Refresh started", interval_ms=self.refresh_interval_ms)
        return self._refresh_task

    async def stop_refresh(self) -> None:
        """Cancel the background refresh and wait for it to finish."""
        task = self._refresh_task
        self._refresh_task = None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.logger.info("Refresh stopped")

    async def _refresh_loop(self) -> None:
        interval = self.refresh_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                self.load()
            except Exception as e:
                # One failed tick must not end the refresh loop
                self.logger.exception("Refresh failed", error=str(e))

    # Internals

    def _read_records(self) -> list:
        try:
            raw = self.storage.get(self.key)
        except StorageReadError as e:
            self.logger.warning("Stored events unreadable, treating as empty", error=str(e))
            return []

        if raw is None:
            return []

        try:
            data = json.loads(raw)
        except ValueError as e:
            self.logger.warning("Stored events unparsable, treating as empty", error=str(e))
            return []

        if not isinstance(data, list):
            self.logger.warning("Stored events are not a list, treating as empty",
                                payload_type=type(data).__name__)
            return []
        return data

    def _persist(self, events: List[Event]) -> bool:
        payload = json.dumps([event.to_record() for event in events])
        try:
            self.storage.set(self.key, payload)
        except StorageWriteError as e:
            self.last_persist_ok = False
            self.logger.warning("Failed to persist events", error=str(e), count=len(events))
            warnings.warn(f"Changes may not be saved: {e}", PersistenceWarning, stacklevel=3)
            return False
        self.last_persist_ok = True
        return True

    def _replace(self, events: List[Event]) -> bool:
        changed = events != self._events
        self._events = list(events)
        return changed

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.events)
            except Exception as e:
                # Storage is already written; a broken listener only loses its update
                self.logger.exception("Listener failed", error=str(e))
