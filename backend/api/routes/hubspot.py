"""
HubSpot endpoints.

- GET  /hubspot/install         redirect to the HubSpot authorize page
- GET  /hubspot/oauth-callback  exchange the code and store tokens
- POST /hubspot/webhook         receive contact webhook batches

Webhook responses:
- 200 once the batch was received and processed (individual event failures
  are logged; HubSpot's at-least-once delivery covers them)
- 400 on invalid signature, invalid JSON, or a body that is not an array
- 500 when the database is unavailable or anything unexpected happens

Security:
- Requests are verified with the configured SignatureVerifier before the
  body is parsed
- Error responses never include internal details
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from connectors.hubspot import HubSpotClient
from models.database import get_session_factory
from services.credentials import CredentialGateway, DatabaseCredentialGateway
from services.errors import HubSpotAPIError, TransientStoreError, WebhookValidationError
from services.event_dedup import EventDedupStore, get_event_dedup_store
from services.hubspot_oauth import OAuthConfigError, build_install_url, complete_oauth
from services.hubspot_webhooks import WebhookDispatcher, parse_batch
from services.webhook_signatures import SignatureVerifier, get_signature_verifier

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies (overridden in tests via app.dependency_overrides)
# ---------------------------------------------------------------------------

def get_hubspot_client() -> HubSpotClient:
    return HubSpotClient()


def get_credential_gateway(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CredentialGateway:
    return DatabaseCredentialGateway(session_factory)


def get_webhook_dispatcher(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    credentials: CredentialGateway = Depends(get_credential_gateway),
    hubspot: HubSpotClient = Depends(get_hubspot_client),
    dedup: Optional[EventDedupStore] = Depends(get_event_dedup_store),
) -> WebhookDispatcher:
    return WebhookDispatcher(session_factory, credentials=credentials, hubspot=hubspot, dedup=dedup)


def _resolve_webhook_url(request: Request) -> str:
    """Return the URL HubSpot signed: the configured public URL, else the request URL."""
    if settings.HUBSPOT_WEBHOOK_URL:
        query = request.url.query
        return f"{settings.HUBSPOT_WEBHOOK_URL}?{query}" if query else settings.HUBSPOT_WEBHOOK_URL
    return str(request.url)


# ---------------------------------------------------------------------------
# Install flow
# ---------------------------------------------------------------------------

@router.get("/install")
async def hubspot_install() -> Response:
    """Redirect the installing admin to HubSpot's authorize page."""
    try:
        auth_url = build_install_url()
    except OAuthConfigError:
        logger.error("[hubspot] Cannot build install URL: client id or redirect uri not configured")
        return JSONResponse(status_code=500, content={"detail": "HubSpot app is not configured"})
    return RedirectResponse(url=auth_url, status_code=302)


@router.get("/oauth-callback")
async def hubspot_oauth_callback(
    code: Optional[str] = Query(default=None),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    hubspot: HubSpotClient = Depends(get_hubspot_client),
) -> Response:
    """Exchange the authorization code, store tokens, send the admin back to HubSpot."""
    if not code:
        logger.error("[hubspot] Missing code parameter in the OAuth callback")
        return JSONResponse(status_code=400, content={"detail": "Missing code parameter."})

    try:
        await complete_oauth(session_factory, hubspot, code)
    except (OAuthConfigError, HubSpotAPIError) as e:
        logger.error("[hubspot] Error exchanging code for tokens: %s", e)
        return JSONResponse(status_code=500, content={"detail": "Token exchange failed"})

    return RedirectResponse(url=settings.HUBSPOT_POST_INSTALL_URL, status_code=302)


# ---------------------------------------------------------------------------
# Webhook endpoint
# ---------------------------------------------------------------------------

@router.post("/webhook")
async def hubspot_webhook(
    request: Request,
    verifier: SignatureVerifier = Depends(get_signature_verifier),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> JSONResponse:
    """Validate, decode and apply a HubSpot webhook batch."""
    try:
        body: bytes = await request.body()

        if not verifier.verify(request.method, _resolve_webhook_url(request), body, request.headers):
            logger.error("[hubspot_webhook] HubSpot signature validation failed")
            return JSONResponse(status_code=400, content={"detail": "Invalid Signature"})

        try:
            events = parse_batch(body)
        except WebhookValidationError as e:
            logger.error("[hubspot_webhook] Rejected batch: %s", e)
            return JSONResponse(status_code=400, content={"detail": str(e)})

        batch = await dispatcher.process_batch(events)
    except TransientStoreError:
        logger.exception("[hubspot_webhook] Store unavailable, batch left for redelivery")
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
    except Exception:
        logger.exception("[hubspot_webhook] Unexpected error processing batch")
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    content: dict[str, Any] = {"status": "ok", **batch.counts()}
    return JSONResponse(status_code=200, content=content)
