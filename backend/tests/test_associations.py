import asyncio
from typing import Optional

from sqlalchemy import String, select
from sqlalchemy.orm import Mapped, mapped_column

from models.association import AssociatedObjectMixin, AssociatedObjectType, Invoice, PaymentMethod
from models.database import Base
from services import associations
from services.associations import register_association_kind, repoint_references, unregister_association_kind


class LoyaltyCard(AssociatedObjectMixin, Base):
    """Association kind registered only by the test below."""

    __tablename__ = "test_loyalty_cards"

    tier: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)


async def _seed(session_factory) -> None:
    async with session_factory() as session:
        async with session.begin():
            session.add_all([
                PaymentMethod(portal_id="T1", associated_object_id="C1", label="visa"),
                PaymentMethod(portal_id="T1", associated_object_id="C1", label="amex"),
                Invoice(portal_id="T1", associated_object_id="C1", number="INV-1"),
                # Other portal and other object type must be left alone
                Invoice(portal_id="T2", associated_object_id="C1", number="INV-2"),
                Invoice(
                    portal_id="T1",
                    associated_object_id="C1",
                    associated_object_type=AssociatedObjectType.COMPANY,
                    number="INV-3",
                ),
            ])


def test_default_kinds_are_registered() -> None:
    names = [kind.name for kind in associations.registered_kinds()]
    assert "payment_methods" in names
    assert "invoices" in names


def test_repoint_moves_every_kind_within_portal(sqlite_session_factory) -> None:
    async def _run():
        async with sqlite_session_factory() as session_factory:
            await _seed(session_factory)
            async with session_factory() as session:
                async with session.begin():
                    changed = await repoint_references(
                        session, "T1", AssociatedObjectType.CONTACT, "C1", "C2"
                    )
            async with session_factory() as session:
                payments = (await session.execute(select(PaymentMethod))).scalars().all()
                invoices = (await session.execute(select(Invoice))).scalars().all()
            return changed, payments, invoices

    changed, payments, invoices = asyncio.run(_run())

    assert changed["payment_methods"] == 2
    assert changed["invoices"] == 1
    assert {payment.associated_object_id for payment in payments} == {"C2"}
    by_number = {invoice.number: invoice.associated_object_id for invoice in invoices}
    assert by_number == {"INV-1": "C2", "INV-2": "C1", "INV-3": "C1"}


def test_repoint_twice_changes_nothing_the_second_time(sqlite_session_factory) -> None:
    async def _run():
        async with sqlite_session_factory() as session_factory:
            await _seed(session_factory)
            results = []
            for _ in range(2):
                async with session_factory() as session:
                    async with session.begin():
                        results.append(await repoint_references(
                            session, "T1", AssociatedObjectType.CONTACT, "C1", "C2"
                        ))
            return results

    first, second = asyncio.run(_run())

    assert sum(first.values()) == 3
    assert set(second.values()) == {0}


def test_registered_kind_is_repointed(sqlite_session_factory) -> None:
    register_association_kind("loyalty_cards", LoyaltyCard)

    async def _run():
        async with sqlite_session_factory() as session_factory:
            async with session_factory() as session:
                async with session.begin():
                    session.add(LoyaltyCard(portal_id="T1", associated_object_id="C1", tier="gold"))
            async with session_factory() as session:
                async with session.begin():
                    changed = await repoint_references(
                        session, "T1", AssociatedObjectType.CONTACT, "C1", "C2"
                    )
            async with session_factory() as session:
                card = (await session.execute(select(LoyaltyCard))).scalar_one()
            return changed, card

    try:
        changed, card = asyncio.run(_run())
    finally:
        unregister_association_kind("loyalty_cards")

    assert changed["loyalty_cards"] == 1
    assert card.associated_object_id == "C2"
    assert "loyalty_cards" not in [kind.name for kind in associations.registered_kinds()]
