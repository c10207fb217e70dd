"""
Merge reconciliation for HubSpot ``contact.merge`` events.

When HubSpot merges contact ``old`` into contact ``new``, the old id stops
existing. Reconciliation, in one transaction:

1. Resolve the portal's organization (unresolved -> drop, not retried).
2. Repoint every registered association kind from old to new.
3. If a client exists for ``new`` it is authoritative: the old client only
   fills its empty fields, then the old client is deleted.
4. If only the old client exists, its identity is renamed to ``new`` in
   place, keeping the internal id.
5. If neither exists nothing else happens; a later upsert creates the row.

A merge never inserts a client row, so a merge that arrives after a delete
cannot resurrect it. Any failure rolls the whole transaction back.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.association import AssociatedObjectType
from models.client import Client
from services.associations import repoint_references
from services.errors import (
    MergeConsistencyError,
    TransientStoreError,
    UnresolvedTenantError,
    is_transient_store_error,
)
from services.identity import resolve_org

logger = logging.getLogger(__name__)

# Fields the old client may contribute when the new client lacks them.
GAP_FILL_FIELDS: tuple[str, ...] = ("email", "first_name", "last_name", "org_id")


class MergeBranch(str, Enum):
    """Which reconciliation path a merge took."""

    SAME_ID = "same_id"
    ABSORBED_INTO_NEW = "absorbed_into_new"
    RENAMED = "renamed"
    ASSOCIATIONS_ONLY = "associations_only"


@dataclass
class MergeOutcome:
    """Result of a committed merge."""

    branch: MergeBranch
    client_id: Optional[uuid.UUID] = None
    repointed: dict[str, int] = field(default_factory=dict)


async def _lock_clients(
    session: AsyncSession,
    portal_id: str,
    old_contact_id: str,
    new_contact_id: str,
) -> tuple[Optional[Client], Optional[Client]]:
    """Lock both client rows in contact-id order and return (old, new)."""
    result = await session.execute(
        select(Client)
        .where(
            Client.hubspot_portal_id == portal_id,
            Client.hubspot_contact_id.in_([old_contact_id, new_contact_id]),
        )
        .order_by(Client.hubspot_contact_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    by_contact = {client.hubspot_contact_id: client for client in result.scalars()}
    return by_contact.get(old_contact_id), by_contact.get(new_contact_id)


async def _reconcile_clients(
    session: AsyncSession,
    portal_id: str,
    old_contact_id: str,
    new_contact_id: str,
    org_id: uuid.UUID,
) -> tuple[MergeBranch, Optional[uuid.UUID]]:
    """Steps 3-5: collapse or rename the client rows."""
    old_client, new_client = await _lock_clients(
        session, portal_id, old_contact_id, new_contact_id
    )
    now = datetime.utcnow()

    if new_client is not None:
        if old_client is not None:
            for name in GAP_FILL_FIELDS:
                if not getattr(new_client, name) and getattr(old_client, name):
                    setattr(new_client, name, getattr(old_client, name))
            await session.delete(old_client)
        if new_client.org_id is None:
            new_client.org_id = org_id
        new_client.updated_at = now
        await session.flush()
        return MergeBranch.ABSORBED_INTO_NEW, new_client.id

    if old_client is not None:
        old_client.hubspot_contact_id = new_contact_id
        if old_client.org_id is None:
            old_client.org_id = org_id
        old_client.updated_at = now
        await session.flush()
        return MergeBranch.RENAMED, old_client.id

    return MergeBranch.ASSOCIATIONS_ONLY, None


async def reconcile_merge(
    session: AsyncSession,
    portal_id: str | int,
    old_contact_id: str | int,
    new_contact_id: str | int,
) -> MergeOutcome:
    """
    Merge HubSpot contact ``old_contact_id`` into ``new_contact_id``.

    ``session`` must not have a transaction in progress; the whole merge runs
    in one transaction opened here.

    Raises:
        UnresolvedTenantError: The portal is not installed (nothing changed).
        TransientStoreError: The database was unreachable (nothing committed).
        MergeConsistencyError: Any other failure (nothing committed).
    """
    portal_id = str(portal_id)
    old_contact_id = str(old_contact_id)
    new_contact_id = str(new_contact_id)

    if old_contact_id == new_contact_id:
        logger.info(
            "Ignoring merge of contact %s into itself", old_contact_id,
            extra={"portal_id": portal_id},
        )
        return MergeOutcome(branch=MergeBranch.SAME_ID)

    try:
        async with session.begin():
            org_id = await resolve_org(session, portal_id)
            repointed = await repoint_references(
                session, portal_id, AssociatedObjectType.CONTACT,
                old_contact_id, new_contact_id,
            )
            branch, client_id = await _reconcile_clients(
                session, portal_id, old_contact_id, new_contact_id, org_id
            )
    except UnresolvedTenantError:
        raise
    except Exception as exc:
        if is_transient_store_error(exc):
            raise TransientStoreError(
                f"Database unavailable while merging {old_contact_id} -> {new_contact_id}"
            ) from exc
        raise MergeConsistencyError(
            portal_id, old_contact_id, new_contact_id, reason=type(exc).__name__
        ) from exc

    logger.info(
        "Merged contact %s into %s (%s)",
        old_contact_id, new_contact_id, branch.value,
        extra={"portal_id": portal_id, "client_id": str(client_id) if client_id else None, "repointed": repointed},
    )
    return MergeOutcome(branch=branch, client_id=client_id, repointed=repointed)
