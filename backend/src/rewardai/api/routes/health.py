"""
Health check endpoint.

Provides system health status for monitoring and load balancers.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text

from rewardai import __version__
from rewardai.api.dependencies import Services, get_services
from rewardai.api.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(services: Services = Depends(get_services)) -> HealthResponse:
    """
    Check system health.

    Reports whether the database answers a trivial query, for
    monitoring dashboards and load balancer health checks.
    """
    database = "connected"
    try:
        async with services.database.session() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        database = "unavailable"

    return HealthResponse(
        status="healthy" if database == "connected" else "degraded",
        version=__version__,
        database=database,
        xrpl_network=services.settings.xrpl_network,
    )
