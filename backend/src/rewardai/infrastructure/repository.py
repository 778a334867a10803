"""
Repositories mapping persisted records to domain values.

Callers own the session and commit; repositories only add and flush.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rewardai.domain.errors import InvoiceNotFound
from rewardai.domain.models import DistributionRequest, DistributionResult, Invoice, InvoiceStatus

from .database import DistributionRecord, InvoiceRecord

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _to_invoice(record: InvoiceRecord) -> Invoice:
    return Invoice(
        id=record.id,
        asset=record.asset,
        amount=Decimal(record.amount),
        pay_to=record.pay_to,
        status=InvoiceStatus(record.status),
        created_at=_aware(record.created_at),
        expires_at=_aware(record.expires_at),
        network=record.network,
        description=record.description,
        payment_url=record.payment_url,
        payment_header=record.payment_header,
        failure_reason=record.failure_reason,
        failure_code=record.failure_code,
        settlement_tx_hash=record.settlement_tx_hash,
        settlement_network=record.settlement_network,
    )


class InvoiceRepository:
    """Load and store funding invoices."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, invoice_id: str) -> Invoice:
        """
        Load an invoice by id.

        Raises:
            InvoiceNotFound: No invoice with that id
        """
        record = await self.session.get(InvoiceRecord, invoice_id)
        if record is None:
            raise InvoiceNotFound(f"Invoice not found: {invoice_id}")
        return _to_invoice(record)

    async def save(self, invoice: Invoice) -> Invoice:
        """Insert or update an invoice."""
        record = await self.session.get(InvoiceRecord, invoice.id)
        if record is None:
            record = InvoiceRecord(id=invoice.id)
            self.session.add(record)

        record.created_at = invoice.created_at
        record.expires_at = invoice.expires_at
        record.asset = invoice.asset
        record.amount = str(invoice.amount)
        record.pay_to = invoice.pay_to
        record.network = invoice.network
        record.description = invoice.description
        record.payment_url = invoice.payment_url
        record.status = invoice.status.value
        record.payment_header = invoice.payment_header
        record.failure_reason = invoice.failure_reason
        record.failure_code = invoice.failure_code
        record.settlement_tx_hash = invoice.settlement_tx_hash
        record.settlement_network = invoice.settlement_network

        await self.session.flush()
        logger.info(f"Invoice {invoice.id} saved with status {invoice.status.value}")
        return invoice

    async def claim(self, invoice_id: str, distribution_id: str) -> bool:
        """
        Reserve an invoice for one distribution.

        A single conditional UPDATE, so of two concurrent claims on the
        same invoice at most one matches a row.

        Returns:
            True if this call took the invoice, False if it was already taken
        """
        result = await self.session.execute(
            update(InvoiceRecord)
            .where(InvoiceRecord.id == invoice_id, InvoiceRecord.distribution_id.is_(None))
            .values(distribution_id=distribution_id)
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount == 1
        if claimed:
            logger.info(f"Invoice {invoice_id} claimed by distribution {distribution_id}")
        return claimed

    async def release(self, invoice_id: str, distribution_id: str) -> None:
        """Give back a claim for a distribution that never started."""
        await self.session.execute(
            update(InvoiceRecord)
            .where(InvoiceRecord.id == invoice_id, InvoiceRecord.distribution_id == distribution_id)
            .values(distribution_id=None)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Invoice {invoice_id} released by distribution {distribution_id}")

    async def claimed_by(self, invoice_id: str) -> str | None:
        """Id of the distribution holding this invoice, if any."""
        result = await self.session.execute(
            select(InvoiceRecord.distribution_id).where(InvoiceRecord.id == invoice_id)
        )
        return result.scalar_one_or_none()


class DistributionRepository:
    """Append-only audit log of distribution runs."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(
        self,
        request: DistributionRequest,
        result: DistributionResult,
        invoice_id: str | None = None,
        distribution_id: str | None = None,
    ) -> str:
        """
        Persist a distribution result.

        Args:
            distribution_id: Id reserved up front, e.g. by an invoice claim

        Returns:
            The new distribution record id
        """
        record = DistributionRecord(
            source_address=request.source_address,
            asset=request.asset,
            mode=result.mode.value,
            invoice_id=invoice_id,
            total_requested=result.total_requested,
            succeeded_count=result.succeeded_count,
            failed_count=result.failed_count,
            total_amount=str(result.total_amount_requested),
            cancelled=result.cancelled,
            outcomes_json=[
                {
                    "address": outcome.recipient.address,
                    "amount": str(outcome.recipient.amount),
                    "label": outcome.recipient.label,
                    "status": outcome.status.value,
                    "reference": outcome.reference,
                    "reason": outcome.reason,
                    "error_code": outcome.error_code,
                }
                for outcome in result.outcomes
            ],
        )
        if distribution_id is not None:
            record.id = distribution_id
        self.session.add(record)
        await self.session.flush()
        logger.info(f"Distribution {record.id} recorded ({result.mode.value})")
        return record.id
