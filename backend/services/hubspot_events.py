"""
Typed HubSpot webhook events.

Raw webhook payloads are decoded exactly once, here, into a closed set of
variants. Downstream code pattern-matches on the variant class and never
looks at the raw payload again.

HubSpot delivers a JSON array of objects such as::

    {"eventId": 1, "portalId": 62515, "subscriptionType": "contact.propertyChange",
     "objectId": 123, "propertyName": "email", "propertyValue": "a@x.com",
     "occurredAt": 1700000000000, "attemptNumber": 0}

Merge events carry ``primaryObjectId``/``newObjectId`` (the surviving id) and
``mergedObjectIds`` (the ids that stop existing).
"""
from __future__ import annotations

import logging
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from services.clients import ClientFields

logger = logging.getLogger(__name__)

UPSERT_TYPES: frozenset[str] = frozenset({"contact.creation", "contact.propertyChange", "contact.restore"})
DELETE_TYPES: frozenset[str] = frozenset({"contact.deletion", "contact.privacyDeletion"})
MERGE_TYPES: frozenset[str] = frozenset({"contact.merge"})

# HubSpot contact property -> client column
PROPERTY_FIELD_MAP: dict[str, str] = {
    "email": "email",
    "firstname": "first_name",
    "lastname": "last_name",
}


class _EventBase(BaseModel):
    event_id: Optional[str] = None
    portal_id: str
    subscription_type: str
    occurred_at: Optional[int] = None

    @property
    def dedup_key(self) -> Optional[str]:
        """Key identifying this delivery across retries, if HubSpot sent an event id."""
        if not self.event_id:
            return None
        return f"{self.portal_id}:{self.event_id}"


class ContactUpserted(_EventBase):
    """Contact created, restored, or one of its properties changed."""

    kind: Literal["upserted"] = "upserted"
    contact_id: str
    fields: ClientFields = Field(default_factory=ClientFields)


class ContactDeleted(_EventBase):
    """Contact deleted in HubSpot."""

    kind: Literal["deleted"] = "deleted"
    contact_id: str


class ContactMerged(_EventBase):
    """Contact ``old_contact_id`` was merged into ``new_contact_id``."""

    kind: Literal["merged"] = "merged"
    old_contact_id: str
    new_contact_id: str

    @property
    def dedup_key(self) -> Optional[str]:
        base = super().dedup_key
        return f"{base}:{self.old_contact_id}" if base else None


class UnknownEvent(BaseModel):
    """Anything we do not handle: unsupported type or malformed payload."""

    kind: Literal["unknown"] = "unknown"
    event_id: Optional[str] = None
    subscription_type: Optional[str] = None
    reason: str
    raw: Any = None

    @property
    def dedup_key(self) -> Optional[str]:
        return None


WebhookEvent = Union[ContactUpserted, ContactDeleted, ContactMerged, UnknownEvent]


def _as_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def _fields_from_property_change(raw: dict[str, Any]) -> ClientFields:
    column = PROPERTY_FIELD_MAP.get(str(raw.get("propertyName", "")).lower())
    value = raw.get("propertyValue")
    if column is None or value is None:
        return ClientFields()
    return ClientFields(**{column: str(value)})


def decode_event(raw: Any) -> list[WebhookEvent]:
    """
    Decode one element of a webhook array.

    Returns a list because one HubSpot merge event may name several merged
    ids; each becomes its own ContactMerged. Malformed input decodes to a
    single UnknownEvent rather than raising.
    """
    if not isinstance(raw, dict):
        return [UnknownEvent(reason="event is not an object", raw=raw)]

    event_id = _as_id(raw.get("eventId"))
    subscription_type = raw.get("subscriptionType")
    portal_id = _as_id(raw.get("portalId"))
    occurred_at = raw.get("occurredAt") if isinstance(raw.get("occurredAt"), int) else None

    if not isinstance(subscription_type, str):
        return [UnknownEvent(event_id=event_id, reason="missing subscriptionType", raw=raw)]

    known = subscription_type in UPSERT_TYPES | DELETE_TYPES | MERGE_TYPES
    if not known:
        return [UnknownEvent(
            event_id=event_id,
            subscription_type=subscription_type,
            reason="unsupported subscriptionType",
            raw=raw,
        )]
    if portal_id is None:
        return [UnknownEvent(
            event_id=event_id, subscription_type=subscription_type, reason="missing portalId", raw=raw,
        )]

    common: dict[str, Any] = {
        "event_id": event_id,
        "portal_id": portal_id,
        "subscription_type": subscription_type,
        "occurred_at": occurred_at,
    }

    if subscription_type in MERGE_TYPES:
        new_id = _as_id(raw.get("newObjectId")) or _as_id(raw.get("primaryObjectId"))
        merged = raw.get("mergedObjectIds")
        old_ids = [
            old_id
            for old_id in (_as_id(v) for v in merged)
            if old_id and old_id != new_id
        ] if isinstance(merged, list) else []
        if new_id is None or not old_ids:
            return [UnknownEvent(
                event_id=event_id, subscription_type=subscription_type,
                reason="merge event without merged/primary ids", raw=raw,
            )]
        return [
            ContactMerged(old_contact_id=old_id, new_contact_id=new_id, **common)
            for old_id in old_ids
        ]

    contact_id = _as_id(raw.get("objectId"))
    if contact_id is None:
        return [UnknownEvent(
            event_id=event_id, subscription_type=subscription_type, reason="missing objectId", raw=raw,
        )]

    if subscription_type in DELETE_TYPES:
        return [ContactDeleted(contact_id=contact_id, **common)]

    return [ContactUpserted(
        contact_id=contact_id,
        fields=_fields_from_property_change(raw),
        **common,
    )]


def decode_batch(raw_events: list[Any]) -> list[WebhookEvent]:
    """Decode a whole webhook array, preserving delivery order."""
    events: list[WebhookEvent] = []
    for raw in raw_events:
        events.extend(decode_event(raw))
    logger.debug("Decoded %d raw webhook entries into %d events", len(raw_events), len(events))
    return events
