"""
Allocation policies that turn raw inputs into recipient amounts.

Pure functions: no side effects, no I/O. Every policy validates all of
its inputs before computing a single amount, so a bad input never
yields a partial list.

Rounding:
- Policies that divide use floor for every entry
- The remainder is NOT redistributed; undistributed_remainder()
  reports it so callers can surface the shortfall
"""

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Sequence

from .errors import AllocationInvalidInput
from .models import Recipient


class AllocationPolicy(Enum):
    """Supported allocation policies."""
    FIXED = "fixed"
    PROPORTIONAL = "proportional"
    EQUAL_SPLIT = "equal_split"
    RATE_BASED = "rate_based"
    RANKED = "ranked"
    ENGAGEMENT = "engagement"


class AccrualPeriod(Enum):
    """Granularity of periodic rate-based rewards."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


PERIODS_PER_YEAR = {
    AccrualPeriod.DAILY: 365,
    AccrualPeriod.WEEKLY: 52,
    AccrualPeriod.MONTHLY: 12,
}


@dataclass(frozen=True)
class WeightedEntry:
    """
    An address with a numeric weight.

    The weight means a holder balance for proportional airdrops,
    staked principal for rate-based rewards, and an engagement
    score for engagement rewards.
    """
    address: str
    weight: Decimal
    label: str | None = None


def _decimal(value: Any, name: str) -> Decimal:
    """Coerce a numeric input to Decimal or raise AllocationInvalidInput."""
    if value is None:
        raise AllocationInvalidInput(f"Missing required input: {name}")
    if isinstance(value, bool):
        raise AllocationInvalidInput(f"{name} must be a number, got {value!r}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise AllocationInvalidInput(f"{name} must be a number, got {value!r}")
    if not result.is_finite():
        raise AllocationInvalidInput(f"{name} must be finite, got {value!r}")
    return result


def _positive(value: Any, name: str) -> Decimal:
    result = _decimal(value, name)
    if result <= 0:
        raise AllocationInvalidInput(f"{name} must be positive, got {value!r}")
    return result


def _floor(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_FLOOR)


def _require_items(items: Sequence[Any] | None, name: str) -> None:
    if not items:
        raise AllocationInvalidInput(f"No {name} provided")


def _format_quantity(value: Decimal) -> str:
    """Render 1000 as '1,000' for human-readable labels."""
    return f"{value.normalize():,f}"


def fixed_per_winner(addresses: Sequence[str], amount: Any) -> list[Recipient]:
    """
    Give every listed address the same literal amount.

    Used for flash giveaways and milestone rewards.
    """
    _require_items(addresses, "winners")
    per_winner = _positive(amount, "amount")

    return [
        Recipient(address=address, amount=per_winner, label=f"Winner #{i + 1}")
        for i, address in enumerate(addresses)
    ]


def proportional_by_weight(
    entries: Sequence[WeightedEntry],
    total_amount: Any,
) -> list[Recipient]:
    """
    Split total_amount in proportion to each entry's weight.

    Rule: amount_i = floor(weight_i / total_weight * total_amount)

    Example:
        weights [1, 1, 2], total 100 -> [25, 25, 50]
        weights [1, 1, 1], total 10  -> [3, 3, 3] (1 left undistributed)
    """
    _require_items(entries, "holders")
    total = _positive(total_amount, "total_amount")
    weights = [_decimal(entry.weight, f"weight of {entry.address}") for entry in entries]
    if any(weight < 0 for weight in weights):
        raise AllocationInvalidInput("Weights must not be negative")

    total_weight = sum(weights, Decimal(0))
    if total_weight <= 0:
        raise AllocationInvalidInput("Total weight must be positive")

    # weight * total / total_weight keeps exact results for integer inputs
    return [
        Recipient(
            address=entry.address,
            amount=_floor(weight * total / total_weight),
            label=entry.label or f"Holder: {_format_quantity(weight)} tokens",
        )
        for entry, weight in zip(entries, weights)
    ]


def equal_split(addresses: Sequence[str], total_amount: Any) -> list[Recipient]:
    """
    Split total_amount evenly.

    Rule: amount = floor(total_amount / recipient_count)
    """
    _require_items(addresses, "recipients")
    total = _positive(total_amount, "total_amount")
    per_recipient = _floor(total / len(addresses))

    return [Recipient(address=address, amount=per_recipient) for address in addresses]


def rate_based(
    stakes: Sequence[WeightedEntry],
    annual_rate: Any,
    period: AccrualPeriod | str,
) -> list[Recipient]:
    """
    Periodic accrual on a principal at an annual rate.

    Rule: amount = floor(principal * annual_rate / periods_per_year)

    Example:
        principal 1000, rate 0.12, monthly -> floor(1000 * 0.12 / 12) = 10
    """
    _require_items(stakes, "stakers")
    rate = _positive(annual_rate, "annual_rate")

    try:
        period = AccrualPeriod(period)
    except ValueError:
        raise AllocationInvalidInput(f"Unknown accrual period: {period!r}")
    periods = PERIODS_PER_YEAR[period]

    principals = [_decimal(stake.weight, f"principal of {stake.address}") for stake in stakes]

    return [
        Recipient(
            address=stake.address,
            amount=_floor(principal * rate / periods),
            label=stake.label or f"Staker: {_format_quantity(principal)} tokens",
        )
        for stake, principal in zip(stakes, principals)
    ]


def ranked_prizes(entries: Sequence[WeightedEntry], prizes: Sequence[Any]) -> list[Recipient]:
    """
    Pay a prize table to the top competitors in rank order.

    Competitors beyond the number of prizes receive nothing and are
    left out of the result. Entry weights are ignored.
    """
    _require_items(entries, "competitors")
    _require_items(prizes, "prizes")
    amounts = [_decimal(prize, f"prize #{i + 1}") for i, prize in enumerate(prizes)]

    recipients = []
    for rank, (entry, amount) in enumerate(zip(entries, amounts), start=1):
        label = f"Rank #{rank}: {entry.label}" if entry.label else f"Rank #{rank}"
        recipients.append(Recipient(address=entry.address, amount=amount, label=label))
    return recipients


def engagement_weighted(entries: Sequence[WeightedEntry], multiplier: Any) -> list[Recipient]:
    """
    Reward contributors with score * multiplier.

    No rounding is applied; the product is the final amount.
    """
    _require_items(entries, "contributors")
    factor = _decimal(multiplier, "multiplier")

    recipients = []
    for entry in entries:
        score = _decimal(entry.weight, f"score of {entry.address}")
        points = _format_quantity(score)
        label = f"{entry.label} - {points} pts" if entry.label else f"Contributor: {points} pts"
        recipients.append(Recipient(address=entry.address, amount=score * factor, label=label))
    return recipients


def undistributed_remainder(total_amount: Any, recipients: Iterable[Recipient]) -> Decimal:
    """
    Amount left over after floor rounding.

    The remainder is reported, never paid out.
    """
    total = _decimal(total_amount, "total_amount")
    allocated = sum((r.amount for r in recipients), Decimal(0))
    return max(total - allocated, Decimal(0))


def allocate(
    policy: AllocationPolicy | str,
    entries: Sequence[WeightedEntry],
    **params: Any,
) -> list[Recipient]:
    """
    Run an allocation policy by tag.

    Args:
        policy: Policy tag
        entries: Addresses with weights (weights ignored by fixed,
            equal_split and ranked)
        **params: Policy inputs - amount (fixed), total_amount
            (proportional, equal_split), annual_rate and period
            (rate_based), prizes (ranked), multiplier (engagement)

    Returns:
        Recipients in the order of entries

    Raises:
        AllocationInvalidInput: Unknown policy or missing inputs
    """
    try:
        policy = AllocationPolicy(policy)
    except ValueError:
        raise AllocationInvalidInput(f"Unknown allocation policy: {policy!r}")

    addresses = [entry.address for entry in entries or []]

    if policy is AllocationPolicy.FIXED:
        recipients = fixed_per_winner(addresses, params.get("amount"))
        # Keep caller-supplied labels where present
        return [
            Recipient(r.address, r.amount, entry.label or r.label)
            for r, entry in zip(recipients, entries)
        ]
    if policy is AllocationPolicy.PROPORTIONAL:
        return proportional_by_weight(entries, params.get("total_amount"))
    if policy is AllocationPolicy.EQUAL_SPLIT:
        recipients = equal_split(addresses, params.get("total_amount"))
        return [
            Recipient(r.address, r.amount, entry.label)
            for r, entry in zip(recipients, entries)
        ]
    if policy is AllocationPolicy.RATE_BASED:
        if params.get("period") is None:
            raise AllocationInvalidInput("Missing required input: period")
        return rate_based(entries, params.get("annual_rate"), params["period"])
    if policy is AllocationPolicy.RANKED:
        return ranked_prizes(entries, params.get("prizes"))
    return engagement_weighted(entries, params.get("multiplier"))
