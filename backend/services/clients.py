"""
Client store: the canonical client rows keyed by HubSpot identity.

All functions run inside the caller's transaction; they never commit.
Callers wrap them in ``async with session.begin():``.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from models.client import MUTABLE_CLIENT_FIELDS, Client
from services.errors import UnsupportedDialectError

logger = logging.getLogger(__name__)


class ClientFields(BaseModel):
    """Mutable client fields carried by an event. ``None`` means not carried."""

    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    org_id: Optional[uuid.UUID] = None

    def carried(self) -> dict[str, Any]:
        """Return only the fields that were actually provided."""
        return {
            name: value
            for name, value in self.model_dump().items()
            if name in MUTABLE_CLIENT_FIELDS and value is not None
        }

    def fill_from(self, other: "ClientFields") -> "ClientFields":
        """Return a copy where fields missing here are taken from ``other``."""
        merged = other.carried()
        merged.update(self.carried())
        return ClientFields(**merged)


def _dialect_insert(session: AsyncSession):
    """Pick the INSERT construct supporting ON CONFLICT for the bound database."""
    dialect_name = session.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert
    if dialect_name == "sqlite":
        return sqlite.insert
    raise UnsupportedDialectError(dialect_name)


async def upsert_client(
    session: AsyncSession,
    portal_id: str,
    contact_id: str,
    fields: ClientFields,
) -> Client:
    """
    Insert or update the client for (portal_id, contact_id) in one statement.

    A new row gets created_at = updated_at = now. An existing row gets the
    carried mutable fields and a fresh updated_at; identity columns and
    created_at are left untouched. Replaying the same call is a no-op apart
    from updated_at.
    """
    now = datetime.utcnow()
    carried = fields.carried()
    insert = _dialect_insert(session)

    stmt = insert(Client).values(
        id=uuid.uuid4(),
        hubspot_portal_id=str(portal_id),
        hubspot_contact_id=str(contact_id),
        created_at=now,
        updated_at=now,
        **carried,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Client.hubspot_portal_id, Client.hubspot_contact_id],
        set_={**carried, "updated_at": now},
    ).returning(Client)

    result = await session.scalars(stmt, execution_options={"populate_existing": True})
    client = result.one()
    logger.debug(
        "Upserted client %s for portal %s contact %s (fields=%s)",
        client.id, portal_id, contact_id, sorted(carried),
    )
    return client


async def delete_client(session: AsyncSession, portal_id: str, contact_id: str) -> int:
    """Delete the client for (portal_id, contact_id). Returns rows deleted (0 is fine)."""
    result = await session.execute(
        delete(Client).where(
            Client.hubspot_portal_id == str(portal_id),
            Client.hubspot_contact_id == str(contact_id),
        )
    )
    deleted = result.rowcount or 0
    logger.debug(
        "Deleted %d client rows for portal %s contact %s", deleted, portal_id, contact_id
    )
    return deleted


async def find_by_external_id(
    session: AsyncSession,
    portal_id: str,
    contact_id: str,
    *,
    for_update: bool = False,
) -> Optional[Client]:
    """Look up a client by HubSpot identity, optionally locking the row."""
    query = select(Client).where(
        Client.hubspot_portal_id == str(portal_id),
        Client.hubspot_contact_id == str(contact_id),
    )
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()
