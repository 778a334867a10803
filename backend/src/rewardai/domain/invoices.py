"""
Funding invoice lifecycle.

States:
    pending  -> verified -> settled   (terminal success)
    pending  -> failed                (terminal)
    verified -> failed                (terminal)
    pending  -> expired               (terminal, time based)

Expiry is applied lazily: every transition first checks the clock, and
an invoice past its expiry becomes expired before anything else happens.
Invoices are immutable; each transition returns a new instance.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable
from uuid import uuid4

from .addresses import is_valid_address
from .errors import AddressInvalid, InvalidInput, InvalidTransition, InvoiceExpired
from .models import Invoice, InvoiceStatus, PaymentRequirements
from .validation import AddressValidator, as_amount


DEFAULT_TIMEOUT_SECONDS = 300

# Schema of the resource a funded invoice unlocks
DISTRIBUTION_OUTPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "txHash": {"type": "string"},
        "distributed": {"type": "number"},
        "recipients": {"type": "number"},
    },
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class InvoiceConfig:
    """
    Settings the state machine needs to derive requirements.

    Attributes:
        network: x402 network identifier (e.g. "xrpl-testnet")
        payment_base_url: Base URL of the hosted payment page
        timeout_seconds: Invoice lifetime and facilitator max timeout
    """
    network: str
    payment_base_url: str = "https://rewardai.dev"
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS


class InvoiceStateMachine:
    """
    Creates invoices and applies guarded transitions.

    Only the settlement verifier should call the mark_* methods;
    everyone else reads invoices through refresh().
    """

    def __init__(
        self,
        config: InvoiceConfig,
        address_validator: AddressValidator = is_valid_address,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self.address_validator = address_validator
        self.clock = clock

    def create(
        self,
        asset: str,
        amount: Any,
        pay_to: str,
        description: str | None = None,
    ) -> Invoice:
        """
        Create a pending invoice for funding a distribution vault.

        Args:
            asset: Asset identifier to be paid
            amount: Amount requested
            pay_to: Vault address receiving the funds
            description: Optional human-readable purpose

        Raises:
            AddressInvalid: pay_to is not a valid address
            InvalidInput: asset missing or amount not positive
        """
        if not asset:
            raise InvalidInput("Asset identifier is required")
        if not self.address_validator(pay_to):
            raise AddressInvalid(f"Invalid vault address: {pay_to!r}")

        value = as_amount(amount)
        if value is None or value <= 0:
            raise InvalidInput(f"Invoice amount must be a positive number, got {amount!r}")

        created_at = self.clock()
        invoice = Invoice(
            id=f"x402_{uuid4().hex}",
            asset=asset,
            amount=value,
            pay_to=pay_to,
            status=InvoiceStatus.PENDING,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=self.config.timeout_seconds),
            network=self.config.network,
            description=description or "Fund RewardAI distribution vault",
        )
        resource = self.requirements_for(invoice).resource
        return replace(invoice, payment_url=f"{self.config.payment_base_url.rstrip('/')}/pay{resource}")

    def requirements_for(self, invoice: Invoice) -> PaymentRequirements:
        """Derive x402 payment requirements from the invoice's creation parameters."""
        return PaymentRequirements(
            network=invoice.network,
            max_amount_required=str(invoice.amount),
            resource=f"/distribute/{invoice.asset}",
            pay_to=invoice.pay_to,
            asset=invoice.asset,
            max_timeout_seconds=self.config.timeout_seconds,
            description=invoice.description,
            output_schema=DISTRIBUTION_OUTPUT_SCHEMA,
            extra={"blockchain": "xrpl", "purpose": "distribution_funding"},
        )

    def is_expired(self, invoice: Invoice) -> bool:
        return self.clock() > invoice.expires_at

    def refresh(self, invoice: Invoice) -> Invoice:
        """Apply lazy expiry to a pending or verified invoice."""
        if invoice.status in (InvoiceStatus.PENDING, InvoiceStatus.VERIFIED) and self.is_expired(invoice):
            return replace(
                invoice,
                status=InvoiceStatus.EXPIRED,
                failure_reason=f"Invoice expired at {invoice.expires_at.isoformat()}",
                failure_code=InvoiceExpired.code,
            )
        return invoice

    def mark_verified(self, invoice: Invoice, payment_header: str) -> Invoice:
        """pending|verified -> verified, remembering the proof for settlement."""
        invoice = self._guard(invoice, InvoiceStatus.PENDING, InvoiceStatus.VERIFIED)
        return replace(invoice, status=InvoiceStatus.VERIFIED, payment_header=payment_header)

    def mark_settled(
        self,
        invoice: Invoice,
        tx_hash: str | None = None,
        network_id: str | None = None,
    ) -> Invoice:
        """verified -> settled."""
        invoice = self._guard(invoice, InvoiceStatus.VERIFIED)
        return replace(
            invoice,
            status=InvoiceStatus.SETTLED,
            settlement_tx_hash=tx_hash,
            settlement_network=network_id,
        )

    def mark_failed(self, invoice: Invoice, reason: str, code: str) -> Invoice:
        """pending|verified -> failed."""
        invoice = self._guard(invoice, InvoiceStatus.PENDING, InvoiceStatus.VERIFIED)
        return replace(
            invoice,
            status=InvoiceStatus.FAILED,
            failure_reason=reason,
            failure_code=code,
        )

    def ensure_can_verify(self, invoice: Invoice) -> Invoice:
        """Check a verify attempt is allowed without changing state."""
        return self._guard(invoice, InvoiceStatus.PENDING, InvoiceStatus.VERIFIED)

    def ensure_can_settle(self, invoice: Invoice) -> Invoice:
        """Check a settle attempt is allowed without changing state."""
        return self._guard(invoice, InvoiceStatus.VERIFIED)

    def _guard(self, invoice: Invoice, *allowed: InvoiceStatus) -> Invoice:
        invoice = self.refresh(invoice)

        if invoice.status is InvoiceStatus.EXPIRED:
            raise InvoiceExpired(f"Invoice {invoice.id} has expired", invoice=invoice)
        if invoice.status.is_terminal:
            raise InvalidTransition(
                f"Invoice {invoice.id} is {invoice.status.value}; no further transitions allowed"
            )
        if invoice.status not in allowed:
            expected = ", ".join(status.value for status in allowed)
            raise InvalidTransition(
                f"Invoice {invoice.id} is {invoice.status.value}; expected {expected}"
            )
        return invoice


def amount_covered(invoice: Invoice | None, asset: str, pay_to: str, amount: Decimal) -> bool:
    """True if the invoice is settled and funds the requested spend."""
    return invoice is not None and invoice.covers(asset, pay_to, amount)
