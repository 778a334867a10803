"""
Batch distribution endpoint.

Recipients come either as an explicit list or from an allocation
policy. Dry-runs need no funding; live runs must name a settled invoice
that has not funded an earlier distribution.
"""

import logging
from decimal import Decimal
from uuid import uuid4

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rewardai.api.dependencies import Services, get_services, get_session
from rewardai.api.schemas import (
    AllocationSchema,
    DistributeRequest,
    DistributionResponse,
    ErrorResponse,
)
from rewardai.domain.allocation import WeightedEntry, allocate, undistributed_remainder
from rewardai.domain.errors import FundingRequired, InvalidInput, RewardAIError
from rewardai.domain.models import DistributionMode, DistributionRequest, Invoice, Recipient
from rewardai.infrastructure.repository import DistributionRepository, InvoiceRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/distributions", tags=["distributions"])


def _allocate(allocation: AllocationSchema) -> tuple[list[Recipient], Decimal | None]:
    entries = [
        WeightedEntry(address=entry.address, weight=entry.weight, label=entry.label)
        for entry in allocation.entries
    ]
    recipients = allocate(
        allocation.policy,
        entries,
        amount=allocation.amount,
        total_amount=allocation.total_amount,
        annual_rate=allocation.annual_rate,
        period=allocation.period,
        prizes=allocation.prizes,
        multiplier=allocation.multiplier,
    )
    remainder = None
    if allocation.total_amount is not None:
        remainder = undistributed_remainder(allocation.total_amount, recipients)
    return recipients, remainder


async def _claim_funding(
    session: AsyncSession,
    services: Services,
    invoice_id: str | None,
    distribution_id: str,
) -> Invoice | None:
    """
    Load the funding invoice and reserve it for this distribution.

    The claim is committed before any transfer starts, so a second
    request naming the same invoice is refused instead of racing it.
    """
    if invoice_id is None:
        return None

    invoices = InvoiceRepository(session)
    invoice = services.state_machine.refresh(await invoices.get(invoice_id))
    if not await invoices.claim(invoice_id, distribution_id):
        holder = await invoices.claimed_by(invoice_id)
        raise FundingRequired(
            f"Invoice {invoice_id} already funds distribution {holder}",
            {"invoice_id": invoice_id, "distribution_id": holder},
        )
    await session.commit()
    return invoice


@router.post(
    "",
    response_model=DistributionResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid source address or allocation input"},
        402: {"model": ErrorResponse, "description": "Live run without a covering settled invoice"},
        404: {"model": ErrorResponse, "description": "Funding invoice not found"},
        422: {"model": ErrorResponse, "description": "Recipient set rejected"},
    },
)
async def create_distribution(
    request: DistributeRequest,
    services: Services = Depends(get_services),
    session: AsyncSession = Depends(get_session),
) -> DistributionResponse:
    """
    Run a distribution.

    In dry_run mode nothing touches the ledger and every recipient is
    reported as succeeded. In live mode each recipient is transferred
    in order and failures are reported per recipient.
    """
    if (request.recipients is None) == (request.allocation is None):
        raise InvalidInput("Provide exactly one of recipients or allocation")

    remainder = None
    if request.allocation is not None:
        recipients, remainder = _allocate(request.allocation)
    else:
        recipients = [
            Recipient(address=r.address, amount=r.amount, label=r.label)
            for r in request.recipients
        ]

    mode = DistributionMode(request.mode.value)
    distribution_request = DistributionRequest(
        source_address=request.source_address,
        asset=request.asset,
        recipients=recipients,
        mode=mode,
    )

    distribution_id = str(uuid4())
    funding = None
    if mode is DistributionMode.LIVE:
        funding = await _claim_funding(
            session, services, request.funding_invoice_id, distribution_id
        )

    try:
        result = await services.executor.execute(distribution_request, funding=funding)
    except RewardAIError:
        if funding is not None:
            await InvoiceRepository(session).release(funding.id, distribution_id)
            await session.commit()
        raise

    funding_id = funding.id if funding is not None else None
    await DistributionRepository(session).record(
        distribution_request, result, funding_id, distribution_id
    )
    await session.commit()

    return DistributionResponse.from_result(distribution_id, result, remainder)
