"""
Request-scoped dependencies.

Long-lived components are built once in the application lifespan and
stored on app.state; routes receive them through Depends.
"""

from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rewardai.config import Settings
from rewardai.domain.invoices import InvoiceStateMachine
from rewardai.infrastructure.database import Database
from rewardai.services.distribution import DistributionExecutor
from rewardai.services.ledger import LedgerClient
from rewardai.services.settlement import SettlementVerifier
from rewardai.services.x402 import FacilitatorClient


@dataclass
class Services:
    """Components shared by every request."""
    settings: Settings
    database: Database
    ledger: LedgerClient
    facilitator: FacilitatorClient
    state_machine: InvoiceStateMachine
    verifier: SettlementVerifier
    executor: DistributionExecutor


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_session(
    services: Services = Depends(get_services),
) -> AsyncGenerator[AsyncSession, None]:
    """One session per request; routes commit explicitly."""
    async with services.database.session() as session:
        yield session
