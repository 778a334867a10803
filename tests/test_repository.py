"""
Tests for the invoice claim that ties one invoice to one distribution.
"""
from decimal import Decimal

import pytest

from rewardai.infrastructure.database import Database
from rewardai.infrastructure.repository import InvoiceRepository
from tests.conftest import VAULT


async def open_database(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'claims.db'}")
    await database.create_all()
    return database


async def stored_invoice(database, state_machine):
    invoice = state_machine.create("XRP", Decimal("100"), VAULT)
    async with database.session() as session:
        await InvoiceRepository(session).save(invoice)
        await session.commit()
    return invoice


class TestInvoiceClaim:

    @pytest.mark.asyncio
    async def test_second_claim_loses(self, tmp_path, state_machine):
        database = await open_database(tmp_path)
        try:
            invoice = await stored_invoice(database, state_machine)

            async with database.session() as first, database.session() as second:
                assert await InvoiceRepository(first).claim(invoice.id, "dist-1")
                await first.commit()
                assert not await InvoiceRepository(second).claim(invoice.id, "dist-2")
                assert await InvoiceRepository(second).claimed_by(invoice.id) == "dist-1"
        finally:
            await database.dispose()

    @pytest.mark.asyncio
    async def test_release_frees_only_own_claim(self, tmp_path, state_machine):
        database = await open_database(tmp_path)
        try:
            invoice = await stored_invoice(database, state_machine)

            async with database.session() as session:
                invoices = InvoiceRepository(session)
                assert await invoices.claim(invoice.id, "dist-1")

                await invoices.release(invoice.id, "dist-other")
                assert await invoices.claimed_by(invoice.id) == "dist-1"

                await invoices.release(invoice.id, "dist-1")
                assert await invoices.claimed_by(invoice.id) is None
                assert await invoices.claim(invoice.id, "dist-2")
                await session.commit()
        finally:
            await database.dispose()

    @pytest.mark.asyncio
    async def test_claim_unknown_invoice(self, tmp_path):
        database = await open_database(tmp_path)
        try:
            async with database.session() as session:
                assert not await InvoiceRepository(session).claim("x402_missing", "dist-1")
        finally:
            await database.dispose()
