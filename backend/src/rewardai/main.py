"""
FastAPI application entry point.

This is the main application that ties together all components:
- API routes for funding invoices, distributions and account lookups
- Database and HTTP client lifecycle management
- CORS configuration for frontend access
- Error handling and logging
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rewardai import __version__
from rewardai.api.dependencies import Services
from rewardai.api.routes import accounts, distributions, facilitator, health, invoices
from rewardai.api.schemas import ErrorResponse, RejectionResponse
from rewardai.config import Settings, get_settings
from rewardai.domain.errors import (
    AddressInvalid,
    FacilitatorUnreachable,
    FundingRequired,
    InvalidInput,
    InvalidTransition,
    InvoiceExpired,
    InvoiceNotFound,
    LedgerError,
    ProtocolViolation,
    RecipientsInvalid,
    RewardAIError,
)
from rewardai.domain.invoices import InvoiceStateMachine, utc_now
from rewardai.infrastructure.database import Database
from rewardai.services.distribution import DistributionExecutor
from rewardai.services.ledger import LedgerClient, XRPLLedgerClient, XRPLNetwork
from rewardai.services.settlement import SettlementVerifier
from rewardai.services.x402 import FacilitatorClient

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger(__name__)


# Most specific class wins; lookup walks the exception's MRO
ERROR_STATUS_CODES: dict[type[RewardAIError], int] = {
    AddressInvalid: 400,
    InvalidInput: 400,
    FundingRequired: 402,
    InvoiceNotFound: 404,
    InvalidTransition: 409,
    InvoiceExpired: 410,
    RecipientsInvalid: 422,
    LedgerError: 502,
    ProtocolViolation: 502,
    FacilitatorUnreachable: 503,
}


def status_code_for(exc: RewardAIError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


def create_app(
    settings: Settings | None = None,
    ledger: LedgerClient | None = None,
    facilitator_client: FacilitatorClient | None = None,
    clock: Callable = utc_now,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use instead of the environment
        ledger: Ledger client to use instead of XRPL JSON-RPC
        facilitator_client: Facilitator client to use instead of HTTP
        clock: Time source for invoice expiry

    Returns:
        Configured FastAPI instance ready to serve requests.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Builds the shared components on startup and releases the
        database and HTTP connections on shutdown.
        """
        logger.info(f"Starting RewardAI v{__version__}")
        logger.info(f"XRPL Network: {settings.xrpl_network}")
        logger.info(f"Facilitator: {settings.facilitator_url}")
        logger.info(f"Debug mode: {settings.debug}")

        database = Database(settings.database_url, echo=settings.debug)
        await database.create_all()

        http_client = httpx.AsyncClient()
        ledger_client = ledger or XRPLLedgerClient(
            network=XRPLNetwork(settings.xrpl_network),
            wallet_seed=settings.xrpl_wallet_seed,
            custom_url=settings.xrpl_rpc_url,
            poll_interval_seconds=settings.confirmation_poll_seconds,
        )
        facilitator = facilitator_client or FacilitatorClient(
            http_client,
            base_url=settings.facilitator_url,
            timeout_seconds=settings.facilitator_timeout_seconds,
        )
        state_machine = InvoiceStateMachine(
            settings.invoice_config(),
            address_validator=ledger_client.is_valid_address,
            clock=clock,
        )

        app.state.services = Services(
            settings=settings,
            database=database,
            ledger=ledger_client,
            facilitator=facilitator,
            state_machine=state_machine,
            verifier=SettlementVerifier(facilitator, state_machine),
            executor=DistributionExecutor(ledger_client, settings.distribution_config()),
        )

        yield  # Application runs here

        # Shutdown
        logger.info("Shutting down RewardAI")
        await http_client.aclose()
        await database.dispose()

    app = FastAPI(
        title="RewardAI API",
        description=(
            "Batch token distribution on the XRP Ledger.\n\n"
            "Computes payouts from allocation policies, previews them as dry-runs, "
            "and executes live distributions funded through x402 invoices."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else ["https://rewardai.dev"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(health.router)
    app.include_router(invoices.router, prefix="/api/v1")
    app.include_router(distributions.router, prefix="/api/v1")
    app.include_router(facilitator.router, prefix="/api/v1")
    app.include_router(accounts.router, prefix="/api/v1")

    @app.exception_handler(RewardAIError)
    async def domain_exception_handler(request: Request, exc: RewardAIError):
        """Map domain errors to HTTP statuses with a stable error code."""
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {exc}")

        body = ErrorResponse(
            error=type(exc).__name__,
            detail=exc.message,
            code=exc.code,
        )
        if isinstance(exc, RecipientsInvalid):
            body.rejections = [RejectionResponse.from_rejection(r) for r in exc.rejections]

        return JSONResponse(
            status_code=status_code,
            content=body.model_dump(exclude_none=True),
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler for unhandled errors."""
        logger.exception(f"Unhandled error: {exc}")

        # Don't expose internal errors in production
        if settings.debug:
            detail = str(exc)
        else:
            detail = "An internal error occurred"

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "detail": detail,
            },
        )

    return app


# Create the application instance
app = create_app()


# Development server entry point
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rewardai.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
