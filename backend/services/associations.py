"""
Association store: records that point at a client through its HubSpot
contact id.

Association kinds are registered here rather than hardcoded in the merge
path. Adding a kind means defining a model with AssociatedObjectMixin and
calling register_association_kind().
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from models.association import AssociatedObjectMixin, AssociatedObjectType, Invoice, PaymentMethod

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssociationKind:
    """A table whose rows reference HubSpot objects by id."""

    name: str
    model: type[AssociatedObjectMixin]


_REGISTRY: dict[str, AssociationKind] = {}


def register_association_kind(name: str, model: type[AssociatedObjectMixin]) -> AssociationKind:
    """Register (or replace) an association kind under ``name``."""
    kind = AssociationKind(name=name, model=model)
    if name in _REGISTRY and _REGISTRY[name].model is not model:
        logger.warning("Replacing association kind %s (%s -> %s)", name, _REGISTRY[name].model.__name__, model.__name__)
    _REGISTRY[name] = kind
    return kind


def unregister_association_kind(name: str) -> None:
    _REGISTRY.pop(name, None)


def registered_kinds() -> list[AssociationKind]:
    """All registered association kinds, in registration order."""
    return list(_REGISTRY.values())


register_association_kind("payment_methods", PaymentMethod)
register_association_kind("invoices", Invoice)


async def repoint_references(
    session: AsyncSession,
    portal_id: str,
    object_type: AssociatedObjectType,
    old_object_id: str,
    new_object_id: str,
) -> dict[str, int]:
    """
    Rewrite every association of every registered kind from ``old_object_id``
    to ``new_object_id`` within one portal.

    Returns the changed-row count per kind. Running it again after success
    changes nothing and returns zeros.
    """
    changed: dict[str, int] = {}
    for kind in registered_kinds():
        model = kind.model
        result = await session.execute(
            update(model)
            .where(
                model.portal_id == str(portal_id),
                model.associated_object_type == object_type,
                model.associated_object_id == str(old_object_id),
            )
            .values(associated_object_id=str(new_object_id))
            .execution_options(synchronize_session=False)
        )
        changed[kind.name] = result.rowcount or 0
        logger.info(
            "Updated %d %s from %s to %s",
            changed[kind.name], kind.name, old_object_id, new_object_id,
            extra={"portal_id": str(portal_id)},
        )
    return changed
