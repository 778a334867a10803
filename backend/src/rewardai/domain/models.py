"""
Domain models for batch distribution and x402 funding.

These models represent the values that flow between the allocation
calculator, the recipient validator, the distribution executor and the
invoice state machine.

Design Decisions:
- Frozen dataclasses; invoice transitions return new instances
- Decimal for all monetary values to avoid floating-point errors
- Outcomes keep input order so reports are deterministic
- PaymentRequirements is derived from an Invoice and never stored
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class DistributionMode(Enum):
    """Execution mode for a distribution."""
    DRY_RUN = "dry_run"
    LIVE = "live"


class OutcomeStatus(Enum):
    """Per-recipient result of a distribution run."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class InvoiceStatus(Enum):
    """Lifecycle states of a funding invoice."""
    PENDING = "pending"
    VERIFIED = "verified"
    SETTLED = "settled"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Settled, expired and failed invoices never change again."""
        return self in (InvoiceStatus.SETTLED, InvoiceStatus.EXPIRED, InvoiceStatus.FAILED)


@dataclass(frozen=True)
class Recipient:
    """
    A single payee in a distribution.

    Amount is expected to carry its final precision; the executor
    sums amounts as given and never rounds them.
    """
    address: str
    amount: Decimal
    label: str | None = None

    @property
    def display_name(self) -> str:
        return self.label or self.address


@dataclass(frozen=True)
class DistributionRequest:
    """
    One logical distribution from a source account.

    Recipients are stored as a tuple so the request cannot be
    modified once handed to the executor.
    """
    source_address: str
    asset: str
    recipients: tuple[Recipient, ...]
    mode: DistributionMode = DistributionMode.DRY_RUN

    def __post_init__(self) -> None:
        if not isinstance(self.recipients, tuple):
            object.__setattr__(self, "recipients", tuple(self.recipients))

    @property
    def is_live(self) -> bool:
        return self.mode is DistributionMode.LIVE


@dataclass(frozen=True)
class RecipientOutcome:
    """
    Result of processing one recipient.

    A failed outcome may still carry a reference when the transfer
    was submitted but could not be confirmed.
    """
    recipient: Recipient
    status: OutcomeStatus
    reference: str | None = None
    reason: str | None = None
    error_code: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    @classmethod
    def success(cls, recipient: Recipient, reference: str | None = None) -> "RecipientOutcome":
        return cls(recipient=recipient, status=OutcomeStatus.SUCCEEDED, reference=reference)

    @classmethod
    def failure(
        cls,
        recipient: Recipient,
        reason: str,
        error_code: str,
        reference: str | None = None,
    ) -> "RecipientOutcome":
        return cls(
            recipient=recipient,
            status=OutcomeStatus.FAILED,
            reference=reference,
            reason=reason,
            error_code=error_code,
        )


@dataclass(frozen=True)
class DistributionResult:
    """
    Aggregate outcome ledger of one distribution run.

    Built once from the ordered outcomes and never mutated.
    """
    total_requested: int
    succeeded_count: int
    failed_count: int
    total_amount_requested: Decimal
    outcomes: tuple[RecipientOutcome, ...]
    mode: DistributionMode
    cancelled: bool = False

    def __post_init__(self) -> None:
        """Validate aggregate counts."""
        if self.succeeded_count + self.failed_count != self.total_requested:
            raise ValueError(
                f"Outcome counts do not add up: {self.succeeded_count} succeeded + "
                f"{self.failed_count} failed != {self.total_requested} requested"
            )
        if len(self.outcomes) != self.total_requested:
            raise ValueError(
                f"Expected {self.total_requested} outcomes, got {len(self.outcomes)}"
            )

    @classmethod
    def from_outcomes(
        cls,
        outcomes: list[RecipientOutcome],
        mode: DistributionMode,
        total_amount: Decimal,
        cancelled: bool = False,
    ) -> "DistributionResult":
        succeeded = sum(1 for outcome in outcomes if outcome.succeeded)
        return cls(
            total_requested=len(outcomes),
            succeeded_count=succeeded,
            failed_count=len(outcomes) - succeeded,
            total_amount_requested=total_amount,
            outcomes=tuple(outcomes),
            mode=mode,
            cancelled=cancelled,
        )

    @property
    def is_dry_run(self) -> bool:
        return self.mode is DistributionMode.DRY_RUN

    @property
    def success(self) -> bool:
        """True if at least one recipient was paid (always true for a dry-run)."""
        if self.is_dry_run:
            return True
        return self.succeeded_count > 0

    @property
    def errors(self) -> list[str]:
        """Failure reasons in recipient order."""
        return [o.reason for o in self.outcomes if not o.succeeded and o.reason]

    @property
    def references(self) -> list[str]:
        """Receipt identifiers of confirmed transfers in recipient order."""
        return [o.reference for o in self.outcomes if o.succeeded and o.reference]


@dataclass(frozen=True)
class PaymentRequirements:
    """
    x402 payment requirements for funding a distribution vault.

    This structure is sent to the facilitator on every verify and
    settle call. It is recomputed from the invoice each time.
    """
    network: str
    max_amount_required: str
    resource: str
    pay_to: str
    asset: str
    max_timeout_seconds: int
    description: str
    scheme: str = "exact"
    mime_type: str = "application/json"
    output_schema: dict[str, Any] | None = None
    extra: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire format."""
        return {
            "scheme": self.scheme,
            "network": self.network,
            "maxAmountRequired": self.max_amount_required,
            "resource": self.resource,
            "description": self.description,
            "mimeType": self.mime_type,
            "outputSchema": self.output_schema,
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "asset": self.asset,
            "extra": self.extra,
        }


@dataclass(frozen=True)
class Invoice:
    """
    Funding invoice tracked through facilitator verify/settle.

    Owned by the funding flow. The distribution executor only reads
    its terminal status.
    """
    id: str
    asset: str
    amount: Decimal
    pay_to: str
    status: InvoiceStatus
    created_at: datetime
    expires_at: datetime
    network: str
    description: str = ""
    payment_url: str | None = None
    payment_header: str | None = None  # Stored after a successful verify
    failure_reason: str | None = None
    failure_code: str | None = None
    settlement_tx_hash: str | None = None
    settlement_network: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_settled(self) -> bool:
        return self.status is InvoiceStatus.SETTLED

    def covers(self, asset: str, pay_to: str, amount: Decimal) -> bool:
        """True if this settled invoice funds ``amount`` of ``asset`` at ``pay_to``."""
        return (
            self.is_settled
            and self.asset == asset
            and self.pay_to == pay_to
            and self.amount >= amount
        )
