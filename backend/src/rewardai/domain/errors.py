"""
Error vocabulary shared by the distribution engine and the funding flow.

All errors inherit from RewardAIError so the API layer can map them
to HTTP responses in one place. Each class carries a stable ``code``
that is also recorded on failed outcomes and invoices.
"""

from typing import Any


class RewardAIError(Exception):
    """Base exception for all RewardAI errors."""

    code = "rewardai_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class AddressInvalid(RewardAIError):
    """Raised when an account identifier is malformed."""

    code = "address_invalid"


class InvalidInput(RewardAIError):
    """Raised when caller-supplied values are missing or out of range."""

    code = "invalid_input"


class AllocationInvalidInput(InvalidInput):
    """Raised when an allocation policy is missing inputs or has none to allocate."""

    code = "allocation_invalid_input"


class RecipientsInvalid(RewardAIError):
    """
    Raised when one or more recipients fail validation.

    The whole distribution fails closed: no transfer is attempted.
    """

    code = "recipients_invalid"

    def __init__(self, message: str, rejections: list[Any]) -> None:
        super().__init__(message, {"rejected": len(rejections)})
        self.rejections = rejections


class FundingRequired(RewardAIError):
    """Raised when a live distribution has no settled invoice covering its total."""

    code = "funding_required"


# =============================================================================
# Ledger errors (captured per recipient, never abort a batch)
# =============================================================================

class LedgerError(RewardAIError):
    """Base class for ledger-level transfer failures."""

    code = "ledger_error"


class LedgerSubmissionFailed(LedgerError):
    """Raised when the ledger rejects or cannot accept a transfer."""

    code = "ledger_submission_failed"


class LedgerConfirmationFailed(LedgerError):
    """Raised when a submitted transfer is validated with a failing result."""

    code = "ledger_confirmation_failed"


class LedgerConfirmationTimeout(LedgerError):
    """Raised when a transfer is not confirmed within the per-recipient timeout."""

    code = "ledger_confirmation_timeout"


# =============================================================================
# Facilitator errors (folded into the invoice's terminal state)
# =============================================================================

class FacilitatorError(RewardAIError):
    """Base class for x402 facilitator failures."""

    code = "facilitator_error"


class FacilitatorUnreachable(FacilitatorError):
    """Raised when the facilitator cannot be reached or answers 5xx."""

    code = "facilitator_unreachable"


class FacilitatorRejected(FacilitatorError):
    """Raised when the facilitator rejects a payment."""

    code = "facilitator_rejected"


class ProtocolViolation(FacilitatorError):
    """Raised when a facilitator payload or payment header is malformed."""

    code = "protocol_violation"


# =============================================================================
# Invoice errors
# =============================================================================

class InvoiceError(RewardAIError):
    """Base class for invoice lifecycle errors."""

    code = "invoice_error"


class InvalidTransition(InvoiceError):
    """Raised when an invoice transition is not permitted from its current state."""

    code = "invalid_transition"


class InvoiceExpired(InvoiceError):
    """
    Raised when an operation hits an invoice past its expiry.

    ``invoice`` holds the expired snapshot so callers can persist it.
    """

    code = "invoice_expired"

    def __init__(self, message: str, invoice: Any = None) -> None:
        super().__init__(message)
        self.invoice = invoice


class InvoiceNotFound(InvoiceError):
    """Raised when an invoice id is unknown."""

    code = "invoice_not_found"
