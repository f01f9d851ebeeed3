"""Event store — append-only event log.

Learn: Every reconciliation outcome worth auditing is recorded as an
immutable event: when the local record was created, and each time a hook
had to be (re)created on GitHub. Events are flushed with the change they
describe, so they commit or roll back together with it.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookwarden.db.models import Event


def stream_for(kind: str, entity_id: uuid.UUID | str) -> str:
    """Stream naming: "<kind>:<id>", e.g. "org_webhook:3f2a…"."""
    return f"{kind}:{entity_id}"


class EventStore:
    """Append-only event store."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        stream_id: str,
        event_type: str,
        data: dict,
        metadata: dict | None = None,
    ) -> Event:
        """Append an event to a stream. Returns the created event."""
        event = Event(
            stream_id=stream_id,
            type=event_type,
            data=data,
            meta=metadata or {},
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def read_stream(
        self,
        stream_id: str,
        *,
        event_types: list[str] | None = None,
        after_id: int = 0,
        limit: int = 100,
    ) -> list[Event]:
        """Read a stream in append order, optionally filtered by type."""
        query = select(Event).where(
            Event.stream_id == stream_id, Event.id > after_id
        )
        if event_types:
            query = query.where(Event.type.in_(event_types))
        result = await self.db.execute(query.order_by(Event.id).limit(limit))
        return list(result.scalars().all())
