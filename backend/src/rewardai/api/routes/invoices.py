"""
Funding invoice endpoints.

Open an invoice, publish its x402 payment requirements, then verify
and settle the payer's proof through the facilitator.
"""

import logging
from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from rewardai.api.dependencies import Services, get_services, get_session
from rewardai.api.schemas import (
    CreateInvoiceRequest,
    ErrorResponse,
    InvoiceResponse,
    PaymentRequiredResponse,
    VerifyPaymentRequest,
)
from rewardai.domain.errors import InvoiceExpired
from rewardai.domain.models import Invoice
from rewardai.infrastructure.repository import InvoiceRepository
from rewardai.services.x402 import X402_VERSION

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoices", tags=["invoices"])


async def _load(repository: InvoiceRepository, services: Services, invoice_id: str) -> Invoice:
    """Load an invoice and persist lazy expiry if it applies."""
    invoice = await repository.get(invoice_id)
    refreshed = services.state_machine.refresh(invoice)
    if refreshed is not invoice:
        logger.info(f"Invoice {invoice_id} expired")
        await repository.save(refreshed)
        await repository.session.commit()
    return refreshed


async def _transition(
    repository: InvoiceRepository,
    invoice: Invoice,
    step: Callable[[Invoice], Awaitable[Invoice]],
) -> Invoice:
    try:
        updated = await step(invoice)
    except InvoiceExpired as e:
        # Record the expiry before reporting it
        if e.invoice is not None:
            await repository.save(e.invoice)
            await repository.session.commit()
        raise
    await repository.save(updated)
    await repository.session.commit()
    return updated


@router.post(
    "",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse, "description": "Invalid amount, asset or address"}},
)
async def create_invoice(
    request: CreateInvoiceRequest,
    services: Services = Depends(get_services),
    session: AsyncSession = Depends(get_session),
) -> InvoiceResponse:
    """Open a pending invoice for funding the vault."""
    invoice = services.state_machine.create(
        asset=request.asset,
        amount=request.amount,
        pay_to=request.pay_to,
        description=request.description,
    )
    repository = InvoiceRepository(session)
    await repository.save(invoice)
    await session.commit()

    logger.info(f"Invoice {invoice.id} created: {invoice.amount} {invoice.asset} to {invoice.pay_to}")
    return InvoiceResponse.from_invoice(invoice)


@router.get(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_invoice(
    invoice_id: str,
    services: Services = Depends(get_services),
    session: AsyncSession = Depends(get_session),
) -> InvoiceResponse:
    """Get an invoice, applying expiry if its deadline has passed."""
    invoice = await _load(InvoiceRepository(session), services, invoice_id)
    return InvoiceResponse.from_invoice(invoice)


@router.get(
    "/{invoice_id}/requirements",
    response_model=PaymentRequiredResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payment_requirements(
    invoice_id: str,
    services: Services = Depends(get_services),
    session: AsyncSession = Depends(get_session),
) -> PaymentRequiredResponse:
    """
    Get the x402 payment requirements a payer must satisfy.

    The body has the shape of an x402 402 Payment Required response.
    """
    invoice = await _load(InvoiceRepository(session), services, invoice_id)
    requirements = services.state_machine.requirements_for(invoice)
    return PaymentRequiredResponse(x402Version=X402_VERSION, accepts=[requirements.to_dict()])


@router.post(
    "/{invoice_id}/verify",
    response_model=InvoiceResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Invoice already settled or failed"},
        410: {"model": ErrorResponse, "description": "Invoice expired"},
    },
)
async def verify_payment(
    invoice_id: str,
    request: VerifyPaymentRequest,
    services: Services = Depends(get_services),
    session: AsyncSession = Depends(get_session),
) -> InvoiceResponse:
    """
    Verify a payment proof with the facilitator.

    A rejected or undecodable proof is not an HTTP error: the invoice
    comes back failed with a failure_code.
    """
    repository = InvoiceRepository(session)
    invoice = await repository.get(invoice_id)
    updated = await _transition(
        repository,
        invoice,
        lambda current: services.verifier.verify(current, request.payment_header),
    )
    return InvoiceResponse.from_invoice(updated)


@router.post(
    "/{invoice_id}/settle",
    response_model=InvoiceResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Invoice not verified"},
        410: {"model": ErrorResponse, "description": "Invoice expired"},
    },
)
async def settle_payment(
    invoice_id: str,
    services: Services = Depends(get_services),
    session: AsyncSession = Depends(get_session),
) -> InvoiceResponse:
    """Settle a verified payment on-chain through the facilitator."""
    repository = InvoiceRepository(session)
    invoice = await repository.get(invoice_id)
    updated = await _transition(repository, invoice, services.verifier.settle)
    return InvoiceResponse.from_invoice(updated)
