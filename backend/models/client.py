"""
Client model - the internal record for one HubSpot contact.

A client is addressable by its internal id and, uniquely, by
(hubspot_portal_id, hubspot_contact_id). The internal id survives
contact merges; only the HubSpot identity columns are rewritten.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.database import Base

# Columns an upsert or a merge may overwrite. Identity columns are not listed.
MUTABLE_CLIENT_FIELDS: tuple[str, ...] = ("email", "first_name", "last_name", "org_id")


class Client(Base):
    """Client synced from a HubSpot contact."""

    __tablename__ = "clients"
    __table_args__ = (
        UniqueConstraint(
            "hubspot_portal_id", "hubspot_contact_id",
            name="uq_clients_hubspot_identity",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("organizations.id"), nullable=True, index=True
    )
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # HubSpot identity
    hubspot_portal_id: Mapped[str] = mapped_column(String(64), nullable=False)
    hubspot_contact_id: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
