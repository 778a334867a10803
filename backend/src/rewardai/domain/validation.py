"""
Recipient set validation for batch distributions.

This module contains pure functions that gate a recipient list before
any transfer is attempted. No side effects, no I/O.

Rules per recipient:
1. Address passes the address validator
2. Amount is a finite number greater than zero

Design Decisions:
- Input is never mutated or reordered; rejections keep the input index
- Validation is idempotent: same input, same partition
- The caller fails closed on any rejection (no partial submission)
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, Sequence

from .addresses import is_valid_address
from .models import Recipient


AddressValidator = Callable[[str], bool]


@dataclass(frozen=True)
class Rejection:
    """A recipient that failed validation, with the reason."""
    index: int
    recipient: Recipient | None
    reason: str


@dataclass(frozen=True)
class RecipientValidation:
    """Partition of a recipient list into valid entries and rejections."""
    valid: tuple[Recipient, ...] = field(default_factory=tuple)
    rejections: tuple[Rejection, ...] = field(default_factory=tuple)

    @property
    def is_valid(self) -> bool:
        """True if every recipient passed and the list was not empty."""
        return not self.rejections


def as_amount(value: object) -> Decimal | None:
    """
    Interpret a recipient amount as Decimal.

    Returns None for anything that is not a finite number
    (booleans, strings, NaN, infinity).
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return None
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() else None


def check_recipient(recipient: Recipient, address_validator: AddressValidator) -> str | None:
    """
    Validate a single recipient.

    Returns:
        None if valid, otherwise a human-readable reason
    """
    if not isinstance(recipient, Recipient):
        return f"Not a recipient: {recipient!r}"

    if not address_validator(recipient.address):
        return f"Invalid address: {recipient.address!r}"

    amount = as_amount(recipient.amount)
    if amount is None:
        return f"Amount must be a finite number, got {recipient.amount!r}"
    if amount <= 0:
        return f"Amount must be greater than zero, got {amount}"

    return None


def total_amount(recipients: Iterable[Recipient]) -> Decimal:
    """Sum recipient amounts exactly as given (no rounding)."""
    return sum((as_amount(r.amount) or Decimal(0) for r in recipients), Decimal(0))


class RecipientSetValidator:
    """
    Checks a candidate recipient list.

    Example:
        validator = RecipientSetValidator()
        result = validator.validate(recipients)
        if not result.is_valid:
            for rejection in result.rejections:
                print(rejection.index, rejection.reason)
    """

    def __init__(self, address_validator: AddressValidator = is_valid_address) -> None:
        self.address_validator = address_validator

    def validate(self, recipients: Sequence[Recipient]) -> RecipientValidation:
        """
        Partition recipients into valid entries and rejections.

        An empty list is itself rejected: a distribution needs
        at least one recipient.
        """
        if not recipients:
            return RecipientValidation(
                rejections=(Rejection(index=-1, recipient=None, reason="No recipients provided"),),
            )

        valid: list[Recipient] = []
        rejections: list[Rejection] = []

        for index, recipient in enumerate(recipients):
            reason = check_recipient(recipient, self.address_validator)
            if reason is None:
                valid.append(recipient)
            else:
                rejections.append(Rejection(index=index, recipient=recipient, reason=reason))

        return RecipientValidation(valid=tuple(valid), rejections=tuple(rejections))
