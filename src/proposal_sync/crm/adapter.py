"""Record store abstract base class -- the contract the SyncEngine depends on.

SalesforceStore implements it against the Opportunity object; tests use an
in-memory implementation. Field dicts passed to create/update use internal
names (name, amount, stage, close_date, description, external_id); each
implementation translates them to its own API names.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.proposal_sync.crm.schemas import RemoteRecord, SessionInfo, StoreHealth


class RecordStore(ABC):
    """Abstract interface for the remote record store.

    Methods:
        connect: Establish (or reuse) a session.
        find_by_external_id: Look up the record keyed by the external id.
        create: Create a record, return its remote id.
        update_by_id: Update fields of an existing record by remote id.
        reconnect: Drop the session and establish a new one.
        disconnect: Drop the session.
        health: Report connection health without raising.
    """

    @abstractmethod
    async def connect(self) -> SessionInfo:
        """Establish a session; idempotent while one is live."""
        ...

    @abstractmethod
    async def find_by_external_id(self, external_id: str) -> RemoteRecord | None:
        """Fetch the record whose external-id field equals external_id."""
        ...

    @abstractmethod
    async def create(self, fields: dict[str, Any]) -> str:
        """Create a record, return its remote id.

        Raises:
            RemoteDuplicateError: A record with this external id already exists.
        """
        ...

    @abstractmethod
    async def update_by_id(self, record_id: str, fields: dict[str, Any]) -> str:
        """Update a record by remote id, return the id."""
        ...

    async def reconnect(self) -> SessionInfo:
        """Drop any live session and connect again."""
        await self.disconnect()
        return await self.connect()

    @abstractmethod
    async def disconnect(self) -> None:
        """Drop the live session, if any."""
        ...

    @abstractmethod
    async def health(self) -> StoreHealth:
        """Return a health snapshot. Never raises."""
        ...
