"""
Services package - Business logic and external integrations.

Includes the XRPL ledger client, the x402 facilitator client, the
settlement verifier and the batch distribution executor.
"""

from .distribution import DistributionConfig, DistributionExecutor, LoggingObserver
from .ledger import LedgerClient, XRPLLedgerClient, XRPLNetwork
from .settlement import SettlementVerifier
from .x402 import FacilitatorClient

__all__ = [
    "DistributionConfig",
    "DistributionExecutor",
    "FacilitatorClient",
    "LedgerClient",
    "LoggingObserver",
    "SettlementVerifier",
    "XRPLLedgerClient",
    "XRPLNetwork",
]
