"""
Credential gateway: read access to the HubSpot tokens stored by the install
flow.

The sync core receives a gateway explicitly instead of looking tokens up
through module globals. It reads the newest valid token for a portal and may
flag it invalid after HubSpot rejects it.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Protocol

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.hubspot_token import HubSpotToken

logger = logging.getLogger(__name__)


class HubSpotCredential(BaseModel):
    """Token pair handed to outbound HubSpot calls."""

    portal_id: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at <= datetime.utcnow()


class CredentialGateway(Protocol):
    """What the sync core needs from credential storage."""

    async def get_token(self, portal_id: str) -> Optional[HubSpotCredential]:
        ...

    async def mark_invalid(self, portal_id: str) -> None:
        ...


class DatabaseCredentialGateway:
    """CredentialGateway backed by the ``hubspot_tokens`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_token(self, portal_id: str) -> Optional[HubSpotCredential]:
        """Return the newest valid token for ``portal_id``, or None."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(HubSpotToken)
                .where(
                    HubSpotToken.portal_id == str(portal_id),
                    HubSpotToken.is_valid.is_(True),
                )
                .order_by(HubSpotToken.created_at.desc())
                .limit(1)
            )
            token = result.scalar_one_or_none()

        if token is None:
            logger.info("No HubSpot token stored for portal %s", portal_id)
            return None

        expires_at = (
            token.created_at + timedelta(seconds=token.expires_in)
            if token.expires_in
            else None
        )
        return HubSpotCredential(
            portal_id=token.portal_id,
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            expires_at=expires_at,
        )

    async def mark_invalid(self, portal_id: str) -> None:
        """Flag every stored token of ``portal_id`` as needing a refresh."""
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(HubSpotToken)
                    .where(
                        HubSpotToken.portal_id == str(portal_id),
                        HubSpotToken.is_valid.is_(True),
                    )
                    .values(is_valid=False)
                )
        logger.warning(
            "Marked %d HubSpot tokens invalid for portal %s",
            result.rowcount or 0, portal_id,
        )
