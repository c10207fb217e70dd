"""
HubSpot webhook dispatch.

Batch lifecycle: Received -> Validated -> Parsed | Rejected. The route checks
the signature; parse_batch() rejects bodies that are not a JSON array and
decodes the rest into typed events. WebhookDispatcher then applies each
event in delivery order, each in its own transaction:

- ContactUpserted -> client store upsert (enriched best-effort from HubSpot)
- ContactDeleted  -> client store delete
- ContactMerged   -> merge reconciler
- UnknownEvent    -> logged and ignored

One event failing never stops the rest of the batch. Only an unreachable
database (TransientStoreError) aborts the batch so HubSpot redelivers it.
"""
from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.hubspot import ContactDetails, HubSpotClient
from services.clients import ClientFields, delete_client, upsert_client
from services.credentials import CredentialGateway
from services.errors import (
    HubSpotAPIError,
    MergeConsistencyError,
    TransientStoreError,
    UnresolvedTenantError,
    WebhookValidationError,
    is_transient_store_error,
)
from services.event_dedup import EventDedupStore
from services.hubspot_events import (
    ContactDeleted,
    ContactMerged,
    ContactUpserted,
    UnknownEvent,
    WebhookEvent,
    decode_batch,
)
from services.identity import resolve_org
from services.merge import reconcile_merge

logger = logging.getLogger(__name__)


class EventStatus(str, Enum):
    """Terminal state of one event within a batch."""

    APPLIED = "applied"
    IGNORED = "ignored"      # unknown or malformed event
    DROPPED = "dropped"      # portal not installed, never retried
    DUPLICATE = "duplicate"  # already applied in an earlier delivery
    FAILED = "failed"


@dataclass
class EventResult:
    event: WebhookEvent
    status: EventStatus
    detail: Optional[str] = None


@dataclass
class BatchResult:
    results: list[EventResult] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        tally = Counter(result.status.value for result in self.results)
        return {status.value: tally.get(status.value, 0) for status in EventStatus}

    @property
    def failed(self) -> list[EventResult]:
        return [result for result in self.results if result.status is EventStatus.FAILED]


def parse_batch(body: bytes) -> list[WebhookEvent]:
    """
    Decode a webhook body into typed events.

    Raises:
        WebhookValidationError: The body is not JSON or not a JSON array.
    """
    try:
        payload: Any = json.loads(body)
    except (ValueError, UnicodeDecodeError) as exc:
        raise WebhookValidationError("Invalid JSON") from exc

    if not isinstance(payload, list):
        raise WebhookValidationError("Expected JSON array")

    return decode_batch(payload)


def _log_context(event: WebhookEvent) -> dict[str, Any]:
    """Structured logging context shared by the event handlers."""
    return {
        "event_id": event.event_id,
        "portal_id": getattr(event, "portal_id", None),
        "occurred_at": getattr(event, "occurred_at", None),
    }


class WebhookDispatcher:
    """Applies decoded webhook events to the client and association stores."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        credentials: Optional[CredentialGateway] = None,
        hubspot: Optional[HubSpotClient] = None,
        dedup: Optional[EventDedupStore] = None,
    ) -> None:
        self._session_factory = session_factory
        self._credentials = credentials
        self._hubspot = hubspot
        self._dedup = dedup

    async def process_batch(self, events: list[WebhookEvent]) -> BatchResult:
        """
        Apply every event in order.

        Raises:
            TransientStoreError: The database became unreachable; the rest of
                the batch is not attempted.
        """
        batch = BatchResult()
        for event in events:
            batch.results.append(await self._process_event(event))

        logger.info("Processed HubSpot webhook batch: %s", batch.counts())
        return batch

    async def _process_event(self, event: WebhookEvent) -> EventResult:
        key = event.dedup_key
        if key and self._dedup is not None and await self._dedup.was_applied(key):
            logger.debug("Skipping duplicate HubSpot event %s", key)
            return EventResult(event, EventStatus.DUPLICATE)

        try:
            status = await self.apply(event)
        except UnresolvedTenantError as exc:
            logger.warning(
                "Dropping %s event: %s", event.kind, exc,
                extra=_log_context(event),
            )
            return EventResult(event, EventStatus.DROPPED, detail="unresolved_tenant")
        except TransientStoreError:
            raise
        except MergeConsistencyError as exc:
            logger.error(
                "Merge event %s failed and was rolled back: %s", event.event_id, exc,
                exc_info=exc,
            )
            return EventResult(event, EventStatus.FAILED, detail="merge_rolled_back")
        except Exception as exc:
            if is_transient_store_error(exc):
                raise TransientStoreError("Database unavailable while applying webhook event") from exc
            logger.exception(
                "Failed to apply %s event %s", event.kind, event.event_id,
            )
            return EventResult(event, EventStatus.FAILED, detail=type(exc).__name__)

        if status is EventStatus.APPLIED and key and self._dedup is not None:
            await self._dedup.mark_applied(key)
        return EventResult(event, status)

    async def apply(self, event: WebhookEvent) -> EventStatus:
        """Route one event to its handler."""
        if isinstance(event, ContactUpserted):
            await self._apply_upsert(event)
            return EventStatus.APPLIED
        if isinstance(event, ContactDeleted):
            await self._apply_delete(event)
            return EventStatus.APPLIED
        if isinstance(event, ContactMerged):
            await self._apply_merge(event)
            return EventStatus.APPLIED
        if isinstance(event, UnknownEvent):
            logger.info(
                "Ignoring HubSpot event %s (%s): %s",
                event.event_id, event.subscription_type, event.reason,
            )
            return EventStatus.IGNORED
        raise TypeError(f"Unhandled webhook event type: {type(event).__name__}")

    async def _apply_upsert(self, event: ContactUpserted) -> None:
        fields = await self._enrich(event)
        async with self._session_factory() as session:
            async with session.begin():
                org_id = await resolve_org(session, event.portal_id)
                fields = fields.model_copy(update={"org_id": org_id})
                client = await upsert_client(session, event.portal_id, event.contact_id, fields)
        logger.info(
            "Upserted client %s from %s", client.id, event.subscription_type,
            extra={**_log_context(event), "contact_id": event.contact_id},
        )

    async def _apply_delete(self, event: ContactDeleted) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                deleted = await delete_client(session, event.portal_id, event.contact_id)
        logger.info(
            "Deleted %d client rows for contact %s", deleted, event.contact_id,
            extra=_log_context(event),
        )

    async def _apply_merge(self, event: ContactMerged) -> None:
        async with self._session_factory() as session:
            outcome = await reconcile_merge(
                session, event.portal_id, event.old_contact_id, event.new_contact_id
            )
        logger.info(
            "Applied merge of %s into %s (%s)",
            event.old_contact_id, event.new_contact_id, outcome.branch.value,
            extra=_log_context(event),
        )

    async def _enrich(self, event: ContactUpserted) -> ClientFields:
        """
        Fill fields the event did not carry from the HubSpot contact record.

        Best-effort: any failure leaves the event's own fields untouched.
        Values carried by the event win over fetched ones. Only an
        unreachable database propagates.
        """
        if self._credentials is None or self._hubspot is None:
            return event.fields

        try:
            details = await self._fetch_details(event)
        except Exception as exc:
            if is_transient_store_error(exc):
                raise
            logger.warning(
                "Contact enrichment failed for %s: %s", event.contact_id, exc,
                extra={"portal_id": event.portal_id, "error_type": type(exc).__name__},
            )
            return event.fields
        if details is None:
            return event.fields

        fetched = ClientFields(
            email=details.email,
            first_name=details.first_name,
            last_name=details.last_name,
        )
        return event.fields.fill_from(fetched)

    async def _fetch_details(self, event: ContactUpserted) -> Optional[ContactDetails]:
        """Fetch the contact with the portal's stored token, or None when there is no usable token."""
        credential = await self._credentials.get_token(event.portal_id)
        if credential is None:
            return None
        if credential.is_expired:
            logger.debug(
                "Skipping enrichment for %s: stored HubSpot token expired", event.contact_id,
                extra={"portal_id": event.portal_id},
            )
            return None

        try:
            return await self._hubspot.fetch_contact(event.contact_id, credential.access_token)
        except HubSpotAPIError as exc:
            if exc.status_code == 401:
                await self._credentials.mark_invalid(event.portal_id)
            raise
