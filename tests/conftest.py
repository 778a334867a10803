"""
Pytest configuration and shared fixtures.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from rewardai.domain.addresses import is_valid_address
from rewardai.domain.errors import LedgerConfirmationFailed, LedgerSubmissionFailed
from rewardai.domain.invoices import InvoiceConfig, InvoiceStateMachine
from rewardai.services.x402 import FacilitatorClient, create_payment_payload, encode_payment_header


# Known-good classic addresses
VAULT = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
ALICE = "rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe"
BOB = "rf1BiGeXwwQoi8Z2ueFYTEXSwuJYfV2Jpn"
CAROL = "rrrrrrrrrrrrrrrrrrrrBZbvji"
DAVE = "rrrrrrrrrrrrrrrrrrrrrhoLvTp"

NETWORK = "xrpl-testnet"
T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeLedger:
    """
    Deterministic in-memory ledger.

    submit_failures / confirm_failures map a destination address to
    the exception its transfer raises; confirm_delays map a destination
    to seconds confirmation hangs for.
    """

    def __init__(self):
        self.submitted: list[tuple[str, str, str, Decimal]] = []
        self.confirmed: list[str] = []
        self.balances: dict[tuple[str, str], Decimal] = {}
        self.submit_failures: dict[str, Exception] = {}
        self.confirm_failures: dict[str, Exception] = {}
        self.confirm_delays: dict[str, float] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self._destinations: dict[str, str] = {}

    def is_valid_address(self, address):
        return is_valid_address(address)

    async def get_balance(self, address, asset):
        return self.balances.get((address, asset), Decimal(0))

    async def submit_transfer(self, source, destination, asset, amount):
        self.submitted.append((source, destination, asset, amount))
        if destination in self.submit_failures:
            raise self.submit_failures[destination]
        receipt = f"tx-{len(self.submitted)}"
        self._destinations[receipt] = destination
        return receipt

    async def confirm_transfer(self, receipt_id):
        destination = self._destinations[receipt_id]
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.confirm_delays.get(destination, 0))
            if destination in self.confirm_failures:
                raise self.confirm_failures[destination]
            self.confirmed.append(receipt_id)
        finally:
            self.in_flight -= 1

    @property
    def calls(self) -> int:
        return len(self.submitted) + len(self.confirmed)


class RecordingObserver:
    """Collects distribution events."""

    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    @property
    def kinds(self):
        return [event.kind for event in self.events]


class FakeClock:
    """Settable time source."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def state_machine(clock):
    return InvoiceStateMachine(InvoiceConfig(network=NETWORK, timeout_seconds=300), clock=clock)


@pytest.fixture
def submission_failed():
    return LedgerSubmissionFailed("Ledger rejected payment: tecNO_DST")


@pytest.fixture
def confirmation_failed():
    return LedgerConfirmationFailed("Transaction failed with tecPATH_DRY")


def make_facilitator(handler, base_url="https://facilitator.test"):
    """FacilitatorClient whose HTTP calls are answered by handler(request)."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FacilitatorClient(http_client, base_url=base_url, timeout_seconds=5)


def payment_header(scheme="exact", network=NETWORK):
    return encode_payment_header(
        create_payment_payload(scheme, network, {"signature": "deadbeef", "amount": "100"})
    )
