"""
Identity resolution: HubSpot portal id -> internal organization id.

The mapping is owned by the install flow (org_application_links). This
module only reads it.
"""
from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.org_application_link import OrgApplicationLink
from services.errors import UnresolvedTenantError

logger = logging.getLogger(__name__)


async def resolve_org(session: AsyncSession, portal_id: str | int) -> uuid.UUID:
    """
    Return the organization id that installed the app in ``portal_id``.

    Raises:
        UnresolvedTenantError: The portal was never installed or was uninstalled.
    """
    portal_id_str = str(portal_id)
    result = await session.execute(
        select(OrgApplicationLink.org_id).where(
            OrgApplicationLink.hubspot_portal_id == portal_id_str
        )
    )
    org_id = result.scalar_one_or_none()
    if org_id is None:
        logger.info("No org_id found for hubspot_portal_id %s", portal_id_str)
        raise UnresolvedTenantError(portal_id_str)

    logger.debug("Resolved hubspot_portal_id %s to org_id %s", portal_id_str, org_id)
    return org_id
