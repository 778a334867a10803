"""
Account lookups against the ledger.
"""

import logging

from fastapi import APIRouter, Depends, Query

from rewardai.api.dependencies import Services, get_services
from rewardai.api.schemas import BalanceResponse, ErrorResponse
from rewardai.domain.errors import AddressInvalid
from rewardai.services.ledger import NATIVE_ASSET

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.get(
    "/{address}/balance",
    response_model=BalanceResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid address or asset"},
        502: {"model": ErrorResponse, "description": "Ledger lookup failed"},
    },
)
async def get_balance(
    address: str,
    asset: str = Query(default=NATIVE_ASSET, description='"XRP" or "CURRENCY.ISSUER"'),
    services: Services = Depends(get_services),
) -> BalanceResponse:
    """Get the validated balance of an account, e.g. to check vault funding."""
    if not services.ledger.is_valid_address(address):
        raise AddressInvalid(f"Invalid address: {address!r}")

    balance = await services.ledger.get_balance(address, asset)
    logger.info(f"Balance of {address}: {balance} {asset}")
    return BalanceResponse(address=address, asset=asset, balance=str(balance))
