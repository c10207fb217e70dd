"""
Association models - records that reference a client only through its
HubSpot contact id (never the internal primary key).

Every association table shares the (associated_object_id,
associated_object_type, portal_id) columns from AssociatedObjectMixin so the
merge reconciler can repoint them generically.
"""
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import DateTime, Enum, Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from models.database import Base


class AssociatedObjectType(str, enum.Enum):
    """HubSpot object types an association row can point at."""

    CONTACT = "CONTACT"
    COMPANY = "COMPANY"
    DEAL = "DEAL"


class AssociatedObjectMixin:
    """Columns shared by every association kind."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    associated_object_id: Mapped[str] = mapped_column(String(64), nullable=False)
    associated_object_type: Mapped[AssociatedObjectType] = mapped_column(
        Enum(AssociatedObjectType, native_enum=False, length=20),
        nullable=False,
        default=AssociatedObjectType.CONTACT,
    )
    portal_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=True
    )

    @declared_attr.directive
    def __table_args__(cls) -> tuple[Any, ...]:
        return (
            Index(
                f"ix_{cls.__tablename__}_associated_object",
                "portal_id", "associated_object_type", "associated_object_id",
            ),
        )


class PaymentMethod(AssociatedObjectMixin, Base):
    """Stored payment method of a HubSpot contact."""

    __tablename__ = "payment_methods"

    label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class Invoice(AssociatedObjectMixin, Base):
    """Invoice billed to a HubSpot contact."""

    __tablename__ = "invoices"

    number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
