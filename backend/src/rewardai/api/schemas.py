"""
Pydantic schemas for API request/response validation.

These schemas define the contract between clients and the backend.
All monetary values in responses use strings to avoid floating point issues.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from rewardai.domain.models import DistributionResult, Invoice, RecipientOutcome
from rewardai.domain.validation import Rejection


class DistributionModeEnum(str, Enum):
    """Distribution mode for API requests."""
    DRY_RUN = "dry_run"
    LIVE = "live"


# =============================================================================
# Request Schemas
# =============================================================================

class CreateInvoiceRequest(BaseModel):
    """Request to open a funding invoice."""
    asset: str = Field(
        ...,
        description='Asset to be paid: "XRP" or "CURRENCY.ISSUER"',
        min_length=1,
    )
    amount: Decimal = Field(
        ...,
        description="Amount the payer must send",
    )
    pay_to: str = Field(
        ...,
        description="Vault address receiving the payment",
    )
    description: str | None = None


class VerifyPaymentRequest(BaseModel):
    """Payment proof for an invoice."""
    payment_header: str = Field(
        ...,
        description="Base64 X-PAYMENT header produced by the payer",
        min_length=1,
    )


class RecipientSchema(BaseModel):
    """One explicit payout."""
    address: str
    amount: Decimal
    label: str | None = None


class AllocationEntrySchema(BaseModel):
    """Address with the weight an allocation policy reads."""
    address: str
    weight: Decimal = Decimal(0)
    label: str | None = None


class AllocationSchema(BaseModel):
    """
    Derive recipients from a policy instead of listing them.

    Which inputs are required depends on the policy.
    """
    policy: str = Field(
        ...,
        description="fixed, proportional, equal_split, rate_based, ranked or engagement",
    )
    entries: list[AllocationEntrySchema]
    amount: Decimal | None = Field(default=None, description="Per-winner amount (fixed)")
    total_amount: Decimal | None = Field(default=None, description="Pool size (proportional, equal_split)")
    annual_rate: Decimal | None = Field(default=None, description="Annual rate (rate_based)")
    period: str | None = Field(default=None, description="daily, weekly or monthly (rate_based)")
    prizes: list[Decimal] | None = Field(default=None, description="Prize table (ranked)")
    multiplier: Decimal | None = Field(default=None, description="Points multiplier (engagement)")


class DistributeRequest(BaseModel):
    """Request to run a batch distribution."""
    source_address: str = Field(..., description="Vault address paying out")
    asset: str = Field(default="XRP", min_length=1)
    mode: DistributionModeEnum = DistributionModeEnum.DRY_RUN
    recipients: list[RecipientSchema] | None = None
    allocation: AllocationSchema | None = None
    funding_invoice_id: str | None = Field(
        default=None,
        description="Settled invoice funding a live run",
    )


# =============================================================================
# Response Schemas
# =============================================================================

class InvoiceResponse(BaseModel):
    """Funding invoice state."""
    id: str
    status: str
    asset: str
    amount: str
    pay_to: str
    network: str
    description: str
    payment_url: str | None = None
    created_at: datetime
    expires_at: datetime
    failure_reason: str | None = None
    failure_code: str | None = None
    settlement_tx_hash: str | None = None
    settlement_network: str | None = None

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "InvoiceResponse":
        return cls(
            id=invoice.id,
            status=invoice.status.value,
            asset=invoice.asset,
            amount=str(invoice.amount),
            pay_to=invoice.pay_to,
            network=invoice.network,
            description=invoice.description,
            payment_url=invoice.payment_url,
            created_at=invoice.created_at,
            expires_at=invoice.expires_at,
            failure_reason=invoice.failure_reason,
            failure_code=invoice.failure_code,
            settlement_tx_hash=invoice.settlement_tx_hash,
            settlement_network=invoice.settlement_network,
        )


class PaymentRequiredResponse(BaseModel):
    """x402 payment requirements envelope."""
    x402Version: int
    accepts: list[dict[str, Any]]


class SupportedKindResponse(BaseModel):
    """Scheme/network pair offered by the facilitator."""
    scheme: str
    network: str


class OutcomeResponse(BaseModel):
    """Per-recipient distribution outcome."""
    address: str
    amount: str
    label: str | None = None
    status: str
    reference: str | None = None
    reason: str | None = None
    error_code: str | None = None

    @classmethod
    def from_outcome(cls, outcome: RecipientOutcome) -> "OutcomeResponse":
        return cls(
            address=outcome.recipient.address,
            amount=str(outcome.recipient.amount),
            label=outcome.recipient.label,
            status=outcome.status.value,
            reference=outcome.reference,
            reason=outcome.reason,
            error_code=outcome.error_code,
        )


class DistributionResponse(BaseModel):
    """Result of a distribution run."""
    distribution_id: str
    mode: str
    success: bool
    cancelled: bool
    total_requested: int
    succeeded_count: int
    failed_count: int
    total_amount_requested: str
    undistributed_remainder: str | None = None
    outcomes: list[OutcomeResponse]
    errors: list[str] = []

    @classmethod
    def from_result(
        cls,
        distribution_id: str,
        result: DistributionResult,
        remainder: Decimal | None = None,
    ) -> "DistributionResponse":
        return cls(
            distribution_id=distribution_id,
            mode=result.mode.value,
            success=result.success,
            cancelled=result.cancelled,
            total_requested=result.total_requested,
            succeeded_count=result.succeeded_count,
            failed_count=result.failed_count,
            total_amount_requested=str(result.total_amount_requested),
            undistributed_remainder=str(remainder) if remainder is not None else None,
            outcomes=[OutcomeResponse.from_outcome(o) for o in result.outcomes],
            errors=result.errors,
        )


class BalanceResponse(BaseModel):
    """Account balance for one asset."""
    address: str
    asset: str
    balance: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    database: str = "connected"
    xrpl_network: str


class RejectionResponse(BaseModel):
    """Why one recipient was rejected."""
    index: int
    address: str | None = None
    reason: str

    @classmethod
    def from_rejection(cls, rejection: Rejection) -> "RejectionResponse":
        address = rejection.recipient.address if rejection.recipient is not None else None
        return cls(index=rejection.index, address=address if isinstance(address, str) else None,
                   reason=rejection.reason)


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: str | None = None
    code: str | None = None
    rejections: list[RejectionResponse] | None = None
