"""
HubSpot API client.

Responsibilities:
- Fetch contact details (email, first/last name) for webhook enrichment
- Exchange OAuth authorization codes for tokens
- Look up token metadata (portal id) after an exchange
- Retry rate-limited (429) requests using Retry-After
"""
from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from config import settings
from services.errors import HubSpotAPIError

logger = logging.getLogger(__name__)

CONTACT_PROPERTIES: tuple[str, ...] = ("email", "firstname", "lastname")
DEFAULT_RETRY_AFTER_SECONDS: float = 10.0


def _retry_after_seconds(value: Optional[str]) -> float:
    """Parse Retry-After as delta-seconds or an HTTP date; fall back to the default."""
    if not value:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        return max(seconds, 0.0) if math.isfinite(seconds) else DEFAULT_RETRY_AFTER_SECONDS
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring unparseable Retry-After header: %r", value)
        return DEFAULT_RETRY_AFTER_SECONDS
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max((retry_at - datetime.now(timezone.utc)).total_seconds(), 0.0)


class ContactDetails(BaseModel):
    """The contact properties the client store cares about."""

    contact_id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @classmethod
    def from_hubspot(cls, payload: dict[str, Any]) -> "ContactDetails":
        properties: dict[str, Any] = payload.get("properties") or {}
        return cls(
            contact_id=str(payload.get("id", "")),
            email=properties.get("email") or None,
            first_name=properties.get("firstname") or None,
            last_name=properties.get("lastname") or None,
        )


class HubSpotClient:
    """Thin async client for the HubSpot endpoints the sync uses."""

    def __init__(
        self,
        api_base: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        max_retries: int = 5,
    ) -> None:
        self.api_base = (api_base or settings.HUBSPOT_API_BASE).rstrip("/")
        self._transport = transport
        self._timeout = timeout
        self._max_retries = max_retries

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict[str, Any]] = None,
        data: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        """Make a request to the HubSpot API with 429 retry."""
        url: str = f"{self.api_base}{endpoint}"

        for attempt in range(self._max_retries + 1):
            async with httpx.AsyncClient(transport=self._transport) as client:
                try:
                    response: httpx.Response = await client.request(
                        method=method,
                        url=url,
                        headers=headers,
                        params=params,
                        data=data,
                        timeout=self._timeout,
                    )
                except httpx.HTTPError as exc:
                    raise HubSpotAPIError(f"HubSpot request to {endpoint} failed: {exc}") from exc

            # Retry on 429 rate limit
            if response.status_code == 429 and attempt < self._max_retries:
                wait_secs: float = min(_retry_after_seconds(response.headers.get("Retry-After")), 30.0)
                logger.warning(
                    "HubSpot 429 rate limited on %s, retrying in %ss (attempt %d/%d)",
                    endpoint, wait_secs, attempt + 1, self._max_retries,
                )
                await asyncio.sleep(wait_secs)
                continue

            if response.status_code >= 400:
                error_detail: str = ""
                error_body: Any = None
                try:
                    error_body = response.json()
                    # HubSpot error format: {"message": "...", "errors": [...]}
                    error_detail = error_body.get("message", "")
                    if error_body.get("errors"):
                        error_details: list[str] = [e.get("message", str(e)) for e in error_body["errors"]]
                        error_detail = f"{error_detail}: {'; '.join(error_details)}"
                except Exception:
                    error_detail = response.text[:500] if response.text else ""
                raise HubSpotAPIError(
                    f"HubSpot API error ({response.status_code}): {error_detail}",
                    status_code=response.status_code,
                    body=error_body,
                )

            logger.debug("HubSpot responded to %s with status %d", endpoint, response.status_code)
            try:
                payload: Any = response.json()
            except ValueError as exc:
                raise HubSpotAPIError(
                    f"HubSpot returned a non-JSON body for {endpoint}",
                    status_code=response.status_code,
                ) from exc
            if not isinstance(payload, dict):
                raise HubSpotAPIError(
                    f"HubSpot returned an unexpected body for {endpoint}",
                    status_code=response.status_code,
                    body=payload,
                )
            return payload

        raise HubSpotAPIError(f"HubSpot rate limit retries exhausted for {endpoint}", status_code=429)

    async def fetch_contact(self, contact_id: str, access_token: str) -> ContactDetails:
        """Fetch email/first/last name of one contact."""
        if not access_token:
            raise HubSpotAPIError("Missing access token for HubSpot API.")
        if not contact_id:
            raise HubSpotAPIError("Missing contact id when fetching HubSpot contact details.")

        logger.debug("Fetching contact details for contact %s", contact_id)
        payload = await self._make_request(
            "GET",
            f"/crm/v3/objects/contacts/{contact_id}",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
            params={"properties": ",".join(CONTACT_PROPERTIES)},
        )
        return ContactDetails.from_hubspot(payload)

    async def exchange_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
    ) -> dict[str, Any]:
        """Exchange an OAuth authorization code for an access/refresh token pair."""
        return await self._make_request(
            "POST",
            "/oauth/v1/token",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data={
                "grant_type": "authorization_code",
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
        )

    async def get_access_token_info(self, access_token: str) -> dict[str, Any]:
        """Return token metadata, including ``hub_id`` (the portal id)."""
        return await self._make_request("GET", f"/oauth/v1/access-tokens/{access_token}")
