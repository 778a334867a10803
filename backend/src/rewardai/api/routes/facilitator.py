"""
x402 facilitator passthrough.
"""

from fastapi import APIRouter, Depends

from rewardai.api.dependencies import Services, get_services
from rewardai.api.schemas import ErrorResponse, SupportedKindResponse

router = APIRouter(prefix="/facilitator", tags=["facilitator"])


@router.get(
    "/supported",
    response_model=list[SupportedKindResponse],
    responses={503: {"model": ErrorResponse, "description": "Facilitator unreachable"}},
)
async def supported_kinds(services: Services = Depends(get_services)) -> list[SupportedKindResponse]:
    """List the scheme/network pairs the configured facilitator accepts."""
    kinds = await services.facilitator.supported()
    return [SupportedKindResponse(scheme=kind.scheme, network=kind.network) for kind in kinds]
