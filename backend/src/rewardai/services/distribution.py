"""
Batch distribution executor.

Coordinates a distribution run:
1. Source address validation
2. Recipient set validation (fails closed)
3. Dry-run preview or funded live execution
4. Per-recipient outcome accounting

Live transfers run in input order. One recipient's ledger failure is
recorded and the batch moves on; only request-level preconditions abort
the whole call. Narration goes to an injected observer, never to stdout.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from rewardai.domain.errors import (
    AddressInvalid,
    FundingRequired,
    LedgerConfirmationFailed,
    LedgerConfirmationTimeout,
    LedgerError,
    LedgerSubmissionFailed,
    RecipientsInvalid,
)
from rewardai.domain.invoices import amount_covered
from rewardai.domain.models import (
    DistributionRequest,
    DistributionResult,
    Invoice,
    Recipient,
    RecipientOutcome,
)
from rewardai.domain.validation import RecipientSetValidator, as_amount, total_amount

from .ledger import LedgerClient

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


def _any_skipped(outcomes: list[RecipientOutcome]) -> bool:
    return any(outcome.error_code == CANCELLED for outcome in outcomes)


@dataclass(frozen=True)
class DistributionConfig:
    """
    Executor tuning.

    Attributes:
        transfer_timeout_seconds: Bound on submit + confirm for one recipient
        max_concurrency: 1 runs a strictly sequential loop; higher values
            submit through a bounded pool and restore input order afterwards
    """
    transfer_timeout_seconds: float = 60.0
    max_concurrency: int = 1


class EventKind(Enum):
    """Structured events emitted during a run."""
    STARTED = "started"
    RECIPIENT_SUBMITTED = "recipient_submitted"
    RECIPIENT_SUCCEEDED = "recipient_succeeded"
    RECIPIENT_FAILED = "recipient_failed"
    COMPLETED = "completed"


@dataclass(frozen=True)
class DistributionEvent:
    """One observable step of a distribution run."""
    kind: EventKind
    request: DistributionRequest
    index: int | None = None
    recipient: Recipient | None = None
    reference: str | None = None
    reason: str | None = None
    result: DistributionResult | None = None


class DistributionObserver(Protocol):
    """Sink for distribution progress events."""

    def notify(self, event: DistributionEvent) -> None:
        ...


class LoggingObserver:
    """Default observer: writes each event to the module logger."""

    def notify(self, event: DistributionEvent) -> None:
        request = event.request
        position = f"[{event.index + 1}/{len(request.recipients)}]" if event.index is not None else ""

        if event.kind is EventKind.STARTED:
            logger.info(
                f"Distribution started: mode={request.mode.value} source={request.source_address} "
                f"asset={request.asset} recipients={len(request.recipients)}"
            )
        elif event.kind is EventKind.RECIPIENT_SUBMITTED:
            logger.info(f"{position} Submitted {event.recipient.amount} to {event.recipient.display_name}")
        elif event.kind is EventKind.RECIPIENT_SUCCEEDED:
            logger.info(
                f"{position} Sent {event.recipient.amount} to {event.recipient.display_name}"
                + (f" ({event.reference})" if event.reference else "")
            )
        elif event.kind is EventKind.RECIPIENT_FAILED:
            logger.warning(f"{position} Failed {event.recipient.display_name}: {event.reason}")
        elif event.kind is EventKind.COMPLETED and event.result is not None:
            result = event.result
            logger.info(
                f"Distribution complete: {result.succeeded_count}/{result.total_requested} succeeded, "
                f"{result.failed_count} failed, total {result.total_amount_requested}"
                + (" (cancelled)" if result.cancelled else "")
            )


class DistributionExecutor:
    """
    Runs a validated distribution against a ledger client.

    Each instance is self-contained: the ledger client, config and
    observer are passed in, and every execute() call owns its own
    outcome accumulator.

    Example:
        executor = DistributionExecutor(ledger, DistributionConfig(max_concurrency=4))
        preview = await executor.execute(request)
        result = await executor.execute(live_request, funding=settled_invoice)
    """

    def __init__(
        self,
        ledger: LedgerClient,
        config: DistributionConfig | None = None,
        observer: DistributionObserver | None = None,
    ) -> None:
        self.ledger = ledger
        self.config = config or DistributionConfig()
        self.observer = observer or LoggingObserver()
        self.validator = RecipientSetValidator(ledger.is_valid_address)

    async def execute(
        self,
        request: DistributionRequest,
        funding: Invoice | None = None,
        cancel: asyncio.Event | None = None,
    ) -> DistributionResult:
        """
        Execute a distribution request.

        Args:
            request: Source, asset, ordered recipients and mode
            funding: Settled invoice covering the total (live mode only)
            cancel: Set to stop issuing new transfers; transfers already
                submitted still finish confirming

        Returns:
            DistributionResult with one outcome per recipient in input order

        Raises:
            AddressInvalid: Source address is malformed
            RecipientsInvalid: Any recipient failed validation
            FundingRequired: Live mode without a covering settled invoice
        """
        if not self.ledger.is_valid_address(request.source_address):
            raise AddressInvalid(f"Invalid source address: {request.source_address!r}")

        validation = self.validator.validate(request.recipients)
        if not validation.is_valid:
            reasons = "; ".join(r.reason for r in validation.rejections[:5])
            raise RecipientsInvalid(
                f"{len(validation.rejections)} recipient(s) invalid: {reasons}",
                list(validation.rejections),
            )

        total = total_amount(request.recipients)

        if request.is_live and not amount_covered(funding, request.asset, request.source_address, total):
            raise FundingRequired(
                f"Live distribution of {total} {request.asset} from {request.source_address} "
                "requires a settled funding invoice covering the total",
                {"invoice_id": funding.id if funding else None,
                 "invoice_status": funding.status.value if funding else None},
            )

        self._emit(DistributionEvent(kind=EventKind.STARTED, request=request))

        cancelled = False
        if request.is_live:
            outcomes, cancelled = await self._run_live(request, cancel)
        else:
            outcomes = [RecipientOutcome.success(recipient) for recipient in request.recipients]

        result = DistributionResult.from_outcomes(outcomes, request.mode, total, cancelled)
        self._emit(DistributionEvent(kind=EventKind.COMPLETED, request=request, result=result))
        return result

    async def _run_live(
        self,
        request: DistributionRequest,
        cancel: asyncio.Event | None,
    ) -> tuple[list[RecipientOutcome], bool]:
        def cancelled() -> bool:
            return cancel is not None and cancel.is_set()

        if self.config.max_concurrency <= 1:
            outcomes = []
            for index, recipient in enumerate(request.recipients):
                if cancelled():
                    outcomes.append(self._skip(request, index, recipient))
                else:
                    outcomes.append(await self._transfer(request, index, recipient))
            return outcomes, _any_skipped(outcomes)

        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def run(index: int, recipient: Recipient) -> RecipientOutcome:
            async with semaphore:
                if cancelled():
                    return self._skip(request, index, recipient)
                return await self._transfer(request, index, recipient)

        # gather returns results in argument order, restoring input order
        outcomes = await asyncio.gather(
            *(run(index, recipient) for index, recipient in enumerate(request.recipients))
        )
        return list(outcomes), _any_skipped(outcomes)

    async def _transfer(
        self,
        request: DistributionRequest,
        index: int,
        recipient: Recipient,
    ) -> RecipientOutcome:
        submitted: list[str] = []

        async def submit_and_confirm() -> str:
            reference = await self.ledger.submit_transfer(
                request.source_address,
                recipient.address,
                request.asset,
                as_amount(recipient.amount),
            )
            submitted.append(reference)
            self._emit(DistributionEvent(
                kind=EventKind.RECIPIENT_SUBMITTED,
                request=request,
                index=index,
                recipient=recipient,
                reference=reference,
            ))
            await self.ledger.confirm_transfer(reference)
            return reference

        try:
            reference = await asyncio.wait_for(
                submit_and_confirm(),
                timeout=self.config.transfer_timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = LedgerConfirmationTimeout(
                f"Transfer not confirmed within {self.config.transfer_timeout_seconds}s"
            )
            return self._fail(request, index, recipient, str(error), error.code, submitted)
        except LedgerError as e:
            return self._fail(request, index, recipient, str(e), e.code, submitted)
        except Exception as e:
            # a broken client must not abort the rest of the batch
            logger.exception(f"Unexpected ledger client error for {recipient.display_name}")
            code = LedgerConfirmationFailed.code if submitted else LedgerSubmissionFailed.code
            return self._fail(request, index, recipient, f"Unexpected ledger error: {e}", code, submitted)

        self._emit(DistributionEvent(
            kind=EventKind.RECIPIENT_SUCCEEDED,
            request=request,
            index=index,
            recipient=recipient,
            reference=reference,
        ))
        return RecipientOutcome.success(recipient, reference)

    def _fail(
        self,
        request: DistributionRequest,
        index: int,
        recipient: Recipient,
        reason: str,
        code: str,
        submitted: list[str],
    ) -> RecipientOutcome:
        reference = submitted[0] if submitted else None
        self._emit(DistributionEvent(
            kind=EventKind.RECIPIENT_FAILED,
            request=request,
            index=index,
            recipient=recipient,
            reference=reference,
            reason=reason,
        ))
        return RecipientOutcome.failure(recipient, reason, code, reference)

    def _skip(self, request: DistributionRequest, index: int, recipient: Recipient) -> RecipientOutcome:
        return self._fail(request, index, recipient, "Cancelled before submission", CANCELLED, [])

    def _emit(self, event: DistributionEvent) -> None:
        try:
            self.observer.notify(event)
        except Exception:
            # A broken sink must not change transfer outcomes
            logger.exception(f"Distribution observer failed on {event.kind.value}")
