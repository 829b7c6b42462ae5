"""Per-profile identity used to gate deletion.

Ownership is advisory and client-local: the identifier is a plain string
in local storage with no cryptographic binding, so anyone able to edit
that storage can act as any owner. Without a backend there is nothing to
enforce a stronger rule, and this limitation is accepted.
"""

import warnings
from typing import Optional
from uuid import uuid4

import structlog

from bhandara.exceptions import PersistenceWarning, StorageReadError, StorageWriteError
from bhandara.models.event import Event
from bhandara.storage import KeyValueStorage


logger = structlog.get_logger(__name__)

DEFAULT_IDENTITY_KEY = "ownerId"


class IdentityProvider:
    """Creates and remembers the opaque identifier of this profile."""

    def __init__(self, storage: KeyValueStorage, key: str = DEFAULT_IDENTITY_KEY):
        self.storage = storage
        self.key = key
        self._identity: Optional[str] = None
        self.logger = logger.bind(component="identity_provider", key=key)

    def get_or_create(self) -> str:
        """Return the stored identifier, creating and persisting one on first use.

        The value is cached after the first call, so it stays stable for
        the session even when persisting it failed.
        """
        if self._identity is not None:
            return self._identity

        stored = self._read()
        if stored:
            self._identity = stored
            return stored

        identity = str(uuid4())
        try:
            self.storage.set(self.key, identity)
        except StorageWriteError as e:
            self.logger.warning("Failed to persist identity", error=str(e))
            warnings.warn(f"Identity may not be saved: {e}", PersistenceWarning, stacklevel=2)
        else:
            self.logger.info("Identity created")

        self._identity = identity
        return identity

    def _read(self) -> Optional[str]:
        try:
            value = self.storage.get(self.key)
        except StorageReadError as e:
            self.logger.warning("Stored identity unreadable, creating a new one", error=str(e))
            return None
        return value or None


def can_delete(event: Event, owner_id: str) -> bool:
    """True if ``owner_id`` created ``event``. Advisory only, see module docstring."""
    return bool(owner_id) and event.owner_id == owner_id
