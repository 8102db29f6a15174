"""Contacts directory.

Maps recipient IDs to display names for status output. Contacts are
fetched from the server on demand and cached in LocalState so lookups
work offline.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from mediaqueue.client.api import APIError, HTTPClient
from mediaqueue.client.state import CONTACTS_KEY

if TYPE_CHECKING:
    from collections.abc import Callable

    from mediaqueue.client.state import LocalState
    from mediaqueue.core.config import EndpointConfig

logger = logging.getLogger(__name__)


class ContactsError(Exception):
    """Raised when contacts cannot be refreshed."""


@dataclass
class Contact:
    """A recipient known to the server."""

    id: str
    display_name: str

    def to_record(self) -> dict[str, Any]:
        return {"id": self.id, "display_name": self.display_name}

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> Contact:
        return cls(id=str(data["id"]), display_name=str(data.get("display_name") or data["id"]))


class ContactDirectory:
    """Cached contacts of the configured user."""

    def __init__(
        self,
        state: LocalState,
        settings_provider: Callable[[], EndpointConfig | None],
        client_factory: Callable[[EndpointConfig], HTTPClient] = HTTPClient,
    ) -> None:
        self._state = state
        self._settings_provider = settings_provider
        self._client_factory = client_factory
        self._lock = threading.Lock()
        self._contacts: list[Contact] | None = None

    def _parse(self, records: list[dict[str, Any]]) -> list[Contact]:
        contacts = []
        for record in records:
            try:
                contacts.append(Contact.from_record(record))
            except KeyError:
                logger.warning("Skipping contact without id: %r", record)
        return contacts

    def contacts(self) -> list[Contact]:
        """Get cached contacts, loading them from LocalState on first use."""
        with self._lock:
            if self._contacts is None:
                self._contacts = self._parse(self._state.load_records(CONTACTS_KEY))
            return list(self._contacts)

    def display_name(self, contact_id: str) -> str | None:
        """Look up a recipient's display name.

        Returns:
            The display name, or None if the ID is unknown.
        """
        for contact in self.contacts():
            if contact.id == contact_id:
                return contact.display_name
        return None

    def refresh(self) -> list[Contact]:
        """Fetch contacts from the server and replace the cache.

        Raises:
            ContactsError: If settings are missing or the request fails.
        """
        config = self._settings_provider()
        if config is None:
            raise ContactsError(
                "Settings not configured. Please set user key and base URL."
            )

        try:
            with self._client_factory(config) as client:
                records = client.fetch_contacts()
        except APIError as e:
            logger.error("Error fetching contacts: %s", e)
            raise ContactsError(str(e)) from e

        contacts = self._parse(records)
        with self._lock:
            self._state.save_records(CONTACTS_KEY, [c.to_record() for c in contacts])
            self._contacts = contacts
        logger.info("Fetched %d contacts", len(contacts))
        return list(contacts)

    def clear(self) -> None:
        """Forget cached contacts."""
        with self._lock:
            self._state.delete_state(CONTACTS_KEY)
            self._contacts = []
