"""
Settlement verifier for funding invoices.

The only component allowed to move an invoice out of pending. It asks
the x402 facilitator to verify and settle payments and translates every
answer, including transport and protocol failures, into an invoice
state. The core never retries; retry policy belongs to the caller.
"""

import logging

from rewardai.domain.errors import (
    FacilitatorRejected,
    FacilitatorUnreachable,
    ProtocolViolation,
)
from rewardai.domain.invoices import InvoiceStateMachine
from rewardai.domain.models import Invoice

from .x402 import FacilitatorClient, PaymentInvalid, SettlementRejected, decode_payment_header

logger = logging.getLogger(__name__)

INVALID_PAYMENT_HEADER = "invalid_payment_header"


class SettlementVerifier:
    """
    Drives invoices through verify and settle against a facilitator.

    Example:
        verifier = SettlementVerifier(facilitator, state_machine)
        invoice = await verifier.verify(invoice, payment_header)
        if invoice.status is InvoiceStatus.VERIFIED:
            invoice = await verifier.settle(invoice)
    """

    def __init__(self, facilitator: FacilitatorClient, state_machine: InvoiceStateMachine) -> None:
        self.facilitator = facilitator
        self.state_machine = state_machine

    async def verify(self, invoice: Invoice, payment_header: str) -> Invoice:
        """
        Verify a payment proof for an invoice.

        Safe to retry while the invoice is pending or verified.

        Returns:
            The invoice in verified or failed state

        Raises:
            InvoiceExpired: The invoice passed its expiry (carries the expired snapshot)
            InvalidTransition: The invoice is already settled or failed
        """
        invoice = self.state_machine.ensure_can_verify(invoice)
        requirements = self.state_machine.requirements_for(invoice)

        try:
            payload = decode_payment_header(payment_header)
        except ProtocolViolation as e:
            logger.warning(f"Invoice {invoice.id}: {e}")
            return self.state_machine.mark_failed(invoice, str(e), INVALID_PAYMENT_HEADER)

        if payload.scheme != requirements.scheme or payload.network != requirements.network:
            reason = (
                f"Payment is {payload.scheme}/{payload.network}, "
                f"invoice requires {requirements.scheme}/{requirements.network}"
            )
            logger.warning(f"Invoice {invoice.id}: {reason}")
            return self.state_machine.mark_failed(invoice, reason, INVALID_PAYMENT_HEADER)

        try:
            outcome = await self.facilitator.verify(payment_header, requirements)
        except (FacilitatorUnreachable, ProtocolViolation) as e:
            logger.error(f"Invoice {invoice.id} verification failed: {e}")
            return self.state_machine.mark_failed(invoice, str(e), e.code)

        if isinstance(outcome, PaymentInvalid):
            logger.warning(f"Invoice {invoice.id} payment rejected: {outcome.reason}")
            return self.state_machine.mark_failed(invoice, outcome.reason, FacilitatorRejected.code)

        logger.info(f"Invoice {invoice.id} payment verified by facilitator")
        return self.state_machine.mark_verified(invoice, payment_header)

    async def settle(self, invoice: Invoice) -> Invoice:
        """
        Settle a verified invoice on-chain.

        Returns:
            The invoice in settled or failed state

        Raises:
            InvoiceExpired: The invoice passed its expiry
            InvalidTransition: The invoice is not verified
        """
        invoice = self.state_machine.ensure_can_settle(invoice)
        requirements = self.state_machine.requirements_for(invoice)

        try:
            outcome = await self.facilitator.settle(invoice.payment_header or "", requirements)
        except (FacilitatorUnreachable, ProtocolViolation) as e:
            logger.error(f"Invoice {invoice.id} settlement failed: {e}")
            return self.state_machine.mark_failed(invoice, str(e), e.code)

        if isinstance(outcome, SettlementRejected):
            logger.warning(f"Invoice {invoice.id} settlement rejected: {outcome.reason}")
            return self.state_machine.mark_failed(invoice, outcome.reason, FacilitatorRejected.code)

        logger.info(
            f"Invoice {invoice.id} settled: tx={outcome.tx_hash} network={outcome.network_id}"
        )
        return self.state_machine.mark_settled(invoice, outcome.tx_hash, outcome.network_id)
