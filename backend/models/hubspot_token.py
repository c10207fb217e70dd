"""
HubSpot OAuth token model.

Rows are append-only: every OAuth exchange inserts a new row and readers take
the newest valid row for a portal. The sync core never writes tokens; it may
only flag a row invalid so the next install/refresh replaces it.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.database import Base


class HubSpotToken(Base):
    """Access/refresh token pair issued for one HubSpot portal."""

    __tablename__ = "hubspot_tokens"
    __table_args__ = (
        Index("ix_hubspot_tokens_portal_created", "portal_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    portal_id: Mapped[str] = mapped_column(String(64), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_in: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    token_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
