import asyncio
import uuid

import pytest
from sqlalchemy import select

from models.association import Invoice, PaymentMethod
from models.client import Client
from models.org_application_link import OrgApplicationLink
from models.organization import Organization
from services import merge
from services.clients import ClientFields, delete_client, upsert_client
from services.errors import MergeConsistencyError, UnresolvedTenantError
from services.merge import MergeBranch, reconcile_merge


async def _install_portal(session_factory, portal_id: str = "T1") -> uuid.UUID:
    async with session_factory() as session:
        async with session.begin():
            org = Organization(id=uuid.uuid4(), name="Acme")
            session.add(org)
            session.add(OrgApplicationLink(org_id=org.id, hubspot_portal_id=portal_id))
    return org.id


async def _upsert(session_factory, contact_id: str, **fields) -> Client:
    async with session_factory() as session:
        async with session.begin():
            return await upsert_client(session, "T1", contact_id, ClientFields(**fields))


async def _merge(session_factory, old: str, new: str, portal_id: str = "T1"):
    async with session_factory() as session:
        return await reconcile_merge(session, portal_id, old, new)


async def _snapshot(session_factory):
    async with session_factory() as session:
        clients = (await session.execute(select(Client))).scalars().all()
        payments = (await session.execute(select(PaymentMethod))).scalars().all()
        invoices = (await session.execute(select(Invoice))).scalars().all()
    return (
        {client.hubspot_contact_id: client for client in clients},
        sorted(payment.associated_object_id for payment in payments),
        sorted(invoice.associated_object_id for invoice in invoices),
    )


async def _add_associations(session_factory, contact_id: str) -> None:
    async with session_factory() as session:
        async with session.begin():
            session.add(PaymentMethod(portal_id="T1", associated_object_id=contact_id, label="visa"))
            session.add(Invoice(portal_id="T1", associated_object_id=contact_id, number="INV-1"))


def test_merge_renames_client_keeping_internal_id(sqlite_session_factory) -> None:
    async def _run():
        async with sqlite_session_factory() as session_factory:
            org_id = await _install_portal(session_factory)
            original = await _upsert(session_factory, "C1", email="b@x.com")
            await _add_associations(session_factory, "C1")
            outcome = await _merge(session_factory, "C1", "C2")
            return org_id, original, outcome, await _snapshot(session_factory)

    org_id, original, outcome, (clients, payments, invoices) = asyncio.run(_run())

    assert outcome.branch is MergeBranch.RENAMED
    assert outcome.client_id == original.id
    assert outcome.repointed == {"payment_methods": 1, "invoices": 1}
    assert list(clients) == ["C2"]
    assert clients["C2"].id == original.id
    assert clients["C2"].email == "b@x.com"
    assert clients["C2"].org_id == org_id
    assert payments == ["C2"]
    assert invoices == ["C2"]


def test_merge_into_existing_client_fills_gaps_and_drops_old(sqlite_session_factory) -> None:
    async def _run():
        async with sqlite_session_factory() as session_factory:
            await _install_portal(session_factory)
            await _upsert(session_factory, "C1", email="old@x.com", first_name="Ada", last_name="Old")
            survivor = await _upsert(session_factory, "C2", email="new@x.com", last_name="New")
            outcome = await _merge(session_factory, "C1", "C2")
            return survivor, outcome, await _snapshot(session_factory)

    survivor, outcome, (clients, _, _) = asyncio.run(_run())

    assert outcome.branch is MergeBranch.ABSORBED_INTO_NEW
    assert outcome.client_id == survivor.id
    assert list(clients) == ["C2"]
    merged = clients["C2"]
    assert merged.id == survivor.id
    assert merged.email == "new@x.com"
    assert merged.last_name == "New"
    assert merged.first_name == "Ada"


def test_merge_without_clients_only_repoints(sqlite_session_factory) -> None:
    async def _run():
        async with sqlite_session_factory() as session_factory:
            await _install_portal(session_factory)
            await _add_associations(session_factory, "C1")
            outcome = await _merge(session_factory, "C1", "C2")
            return outcome, await _snapshot(session_factory)

    outcome, (clients, payments, invoices) = asyncio.run(_run())

    assert outcome.branch is MergeBranch.ASSOCIATIONS_ONLY
    assert outcome.client_id is None
    assert clients == {}
    assert payments == ["C2"]
    assert invoices == ["C2"]


def test_merge_after_delete_does_not_resurrect_client(sqlite_session_factory) -> None:
    async def _run():
        async with sqlite_session_factory() as session_factory:
            await _install_portal(session_factory)
            await _upsert(session_factory, "C1", email="a@x.com")
            async with session_factory() as session:
                async with session.begin():
                    await delete_client(session, "T1", "C1")
            await _merge(session_factory, "C1", "C2")
            return await _snapshot(session_factory)

    clients, _, _ = asyncio.run(_run())

    assert clients == {}


def test_merge_into_itself_is_a_no_op(sqlite_session_factory) -> None:
    async def _run():
        async with sqlite_session_factory() as session_factory:
            await _install_portal(session_factory)
            await _upsert(session_factory, "C1", email="a@x.com")
            outcome = await _merge(session_factory, "C1", "C1")
            return outcome, await _snapshot(session_factory)

    outcome, (clients, _, _) = asyncio.run(_run())

    assert outcome.branch is MergeBranch.SAME_ID
    assert list(clients) == ["C1"]


def test_merge_for_unknown_portal_changes_nothing(sqlite_session_factory) -> None:
    async def _run():
        async with sqlite_session_factory() as session_factory:
            await _upsert(session_factory, "C1", email="a@x.com")
            await _add_associations(session_factory, "C1")
            with pytest.raises(UnresolvedTenantError):
                await _merge(session_factory, "C1", "C2")
            return await _snapshot(session_factory)

    clients, payments, invoices = asyncio.run(_run())

    assert list(clients) == ["C1"]
    assert payments == ["C1"]
    assert invoices == ["C1"]


def test_merge_failure_after_repoint_rolls_everything_back(sqlite_session_factory, monkeypatch) -> None:
    async def _failing_reconcile(*_args, **_kwargs):
        raise RuntimeError("client reconciliation failed")

    monkeypatch.setattr(merge, "_reconcile_clients", _failing_reconcile)

    async def _run():
        async with sqlite_session_factory() as session_factory:
            await _install_portal(session_factory)
            original = await _upsert(session_factory, "C1", email="a@x.com")
            await _add_associations(session_factory, "C1")
            before = await _snapshot(session_factory)
            with pytest.raises(MergeConsistencyError) as excinfo:
                await _merge(session_factory, "C1", "C2")
            after = await _snapshot(session_factory)
            return original, before, after, excinfo.value

    original, before, after, error = asyncio.run(_run())

    assert error.old_contact_id == "C1"
    assert error.new_contact_id == "C2"
    assert isinstance(error.__cause__, RuntimeError)
    clients_before, payments_before, invoices_before = before
    clients_after, payments_after, invoices_after = after
    assert list(clients_after) == list(clients_before) == ["C1"]
    assert clients_after["C1"].id == original.id
    assert payments_after == payments_before == ["C1"]
    assert invoices_after == invoices_before == ["C1"]


def test_upsert_upsert_merge_scenario(sqlite_session_factory) -> None:
    async def _run():
        async with sqlite_session_factory() as session_factory:
            await _install_portal(session_factory)
            first = await _upsert(session_factory, "C1", email="a@x.com")
            after_first = await _snapshot(session_factory)
            second = await _upsert(session_factory, "C1", email="b@x.com")
            await _add_associations(session_factory, "C1")
            await _merge(session_factory, "C1", "C2")
            return first, after_first, second, await _snapshot(session_factory)

    first, after_first, second, (clients, payments, invoices) = asyncio.run(_run())

    assert list(after_first[0]) == ["C1"]
    assert after_first[0]["C1"].email == "a@x.com"
    assert second.id == first.id
    assert second.email == "b@x.com"
    assert list(clients) == ["C2"]
    assert clients["C2"].id == first.id
    assert clients["C2"].email == "b@x.com"
    assert payments == ["C2"]
    assert invoices == ["C2"]
