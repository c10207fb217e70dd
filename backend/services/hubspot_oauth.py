"""
HubSpot app install flow.

1. /hubspot/install redirects the HubSpot admin to the authorize URL.
2. HubSpot redirects back to /hubspot/oauth-callback with ``code``.
3. The code is exchanged for tokens, the portal id is looked up from the
   token metadata, and the token row is stored for the credential gateway.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from connectors.hubspot import HubSpotClient
from models.hubspot_token import HubSpotToken
from services.errors import HubSpotAPIError

logger = logging.getLogger(__name__)


class OAuthConfigError(RuntimeError):
    """Raised when the HubSpot app credentials are not configured."""


def build_install_url(
    client_id: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    scope: Optional[str] = None,
) -> str:
    """Return the HubSpot authorize URL for installing the app."""
    client_id = client_id or settings.HUBSPOT_CLIENT_ID
    redirect_uri = redirect_uri or settings.HUBSPOT_REDIRECT_URI
    scope = scope or settings.HUBSPOT_SCOPE
    if not client_id or not redirect_uri:
        raise OAuthConfigError("Missing required environment variables")

    query = urlencode({"client_id": client_id, "scope": scope, "redirect_uri": redirect_uri})
    return f"{settings.HUBSPOT_AUTHORIZE_URL}?{query}"


async def store_tokens(session: AsyncSession, portal_id: str, token_data: dict[str, Any]) -> HubSpotToken:
    """Insert a timestamped token row. Older rows stay for audit; readers take the newest."""
    token = HubSpotToken(
        portal_id=str(portal_id),
        access_token=token_data["access_token"],
        refresh_token=token_data.get("refresh_token"),
        expires_in=token_data.get("expires_in"),
        token_type=token_data.get("token_type"),
        created_at=datetime.utcnow(),
    )
    session.add(token)
    await session.flush()
    return token


async def complete_oauth(
    session_factory: async_sessionmaker[AsyncSession],
    hubspot: HubSpotClient,
    code: str,
) -> HubSpotToken:
    """
    Exchange ``code`` for tokens and persist them.

    Raises:
        OAuthConfigError: App credentials are not configured.
        HubSpotAPIError: HubSpot rejected the exchange or the token lookup.
    """
    client_id = settings.HUBSPOT_CLIENT_ID
    client_secret = settings.HUBSPOT_CLIENT_SECRET
    redirect_uri = settings.HUBSPOT_REDIRECT_URI
    if not client_id or not client_secret or not redirect_uri:
        raise OAuthConfigError("Missing required environment variables")

    token_data = await hubspot.exchange_code(code, client_id, client_secret, redirect_uri)
    access_token = token_data.get("access_token")
    if not access_token:
        raise HubSpotAPIError("HubSpot token response did not include an access token", body=token_data)

    token_info = await hubspot.get_access_token_info(access_token)
    portal_id = token_info.get("hub_id")
    if portal_id is None:
        raise HubSpotAPIError("HubSpot token metadata did not include hub_id", body=token_info)

    async with session_factory() as session:
        async with session.begin():
            token = await store_tokens(session, str(portal_id), token_data)

    logger.info("Stored HubSpot tokens for portal %s", portal_id)
    return token
