"""
OrgApplicationLink model - the installation record of the HubSpot app.

One row per installed HubSpot portal. Removing the row (uninstall) makes the
portal unresolvable, and webhook events from it are dropped.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.database import Base

if TYPE_CHECKING:
    from models.organization import Organization


class OrgApplicationLink(Base):
    """Maps a HubSpot portal to the organization that installed the app."""

    __tablename__ = "org_application_links"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True
    )
    hubspot_portal_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False
    )
    installed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=True
    )

    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="application_links"
    )
