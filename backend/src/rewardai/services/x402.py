"""
x402 payment facilitator integration.

The x402 protocol flow used to fund a distribution vault:
1. RewardAI publishes payment requirements for an invoice (402 Payment Required)
2. The payer signs a payment and sends it base64-encoded as the X-PAYMENT header
3. RewardAI asks the facilitator to verify the payment
4. RewardAI asks the facilitator to settle the payment on-chain

See: https://github.com/coinbase/x402

Facilitator responses are validated at the boundary and turned into
closed result types; anything malformed raises ProtocolViolation.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError

from rewardai.domain.errors import FacilitatorUnreachable, ProtocolViolation
from rewardai.domain.models import PaymentRequirements

logger = logging.getLogger(__name__)


X402_VERSION = 1
DEFAULT_FACILITATOR_URL = "https://x402-facilitator.coinbase.com"
PAYMENT_HEADER = "X-PAYMENT"


# =============================================================================
# Wire models
# =============================================================================

class PaymentPayload(BaseModel):
    """Payment payload carried in the X-PAYMENT header."""
    model_config = ConfigDict(populate_by_name=True)

    x402_version: int = Field(alias="x402Version")
    scheme: str
    network: str
    payload: Any


class VerifyResponse(BaseModel):
    """Facilitator /verify response body."""
    is_valid: StrictBool = Field(alias="isValid")
    invalid_reason: str | None = Field(default=None, alias="invalidReason")


class SettleResponse(BaseModel):
    """Facilitator /settle response body."""
    success: StrictBool
    error: str | None = None
    tx_hash: str | None = Field(default=None, alias="txHash")
    network_id: str | None = Field(default=None, alias="networkId")


class SupportedKind(BaseModel):
    """A scheme/network pair the facilitator can handle."""
    scheme: str
    network: str


# =============================================================================
# Result variants
# =============================================================================

@dataclass(frozen=True)
class PaymentVerified:
    """The facilitator accepted the payment proof."""


@dataclass(frozen=True)
class PaymentInvalid:
    """The facilitator rejected the payment proof."""
    reason: str


@dataclass(frozen=True)
class PaymentSettled:
    """The payment was settled on-chain."""
    tx_hash: str | None
    network_id: str | None


@dataclass(frozen=True)
class SettlementRejected:
    """The facilitator could not settle the payment."""
    reason: str


VerifyOutcome = PaymentVerified | PaymentInvalid
SettleOutcome = PaymentSettled | SettlementRejected


# =============================================================================
# Payment header codec
# =============================================================================

def create_payment_payload(scheme: str, network: str, payload: Any) -> PaymentPayload:
    """Build a version-1 payment payload."""
    return PaymentPayload(x402_version=X402_VERSION, scheme=scheme, network=network, payload=payload)


def encode_payment_header(payload: PaymentPayload) -> str:
    """Encode a payment payload to base64 for the X-PAYMENT header."""
    data = json.dumps(payload.model_dump(by_alias=True))
    return base64.b64encode(data.encode("utf-8")).decode("ascii")


def decode_payment_header(header: str) -> PaymentPayload:
    """
    Decode an X-PAYMENT header.

    Raises:
        ProtocolViolation: Not base64, not JSON, or missing fields
    """
    try:
        data = json.loads(base64.b64decode(header, validate=True).decode("utf-8"))
        return PaymentPayload.model_validate(data)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, ValidationError, TypeError) as e:
        raise ProtocolViolation(f"Malformed payment header: {e}") from e


# =============================================================================
# Facilitator client
# =============================================================================

class FacilitatorClient:
    """
    HTTP client for an x402 facilitator.

    Responsibilities:
    - POST /verify and /settle with the invoice's payment requirements
    - GET /supported for the scheme/network pairs on offer
    - Validate every response body before it reaches the state machine

    Usage:
        facilitator = FacilitatorClient(http_client, "https://x402-facilitator.coinbase.com")
        outcome = await facilitator.verify(header, requirements)
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = DEFAULT_FACILITATOR_URL,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    async def verify(self, payment_header: str, requirements: PaymentRequirements) -> VerifyOutcome:
        """
        Verify a payment proof against the requirements.

        The facilitator checks the signature, the amount and that
        the payment has not been used before.
        """
        data = await self._post("/verify", payment_header, requirements)
        try:
            response = VerifyResponse.model_validate(data)
        except ValidationError as e:
            raise ProtocolViolation(f"Malformed verify response: {e}") from e

        if response.is_valid:
            return PaymentVerified()
        return PaymentInvalid(reason=response.invalid_reason or "Payment rejected by facilitator")

    async def settle(self, payment_header: str, requirements: PaymentRequirements) -> SettleOutcome:
        """Settle a verified payment on-chain."""
        data = await self._post("/settle", payment_header, requirements)
        try:
            response = SettleResponse.model_validate(data)
        except ValidationError as e:
            raise ProtocolViolation(f"Malformed settle response: {e}") from e

        if response.success:
            return PaymentSettled(tx_hash=response.tx_hash, network_id=response.network_id)
        return SettlementRejected(reason=response.error or "Settlement rejected by facilitator")

    async def supported(self) -> list[SupportedKind]:
        """Get supported scheme/network pairs."""
        data = await self._request("GET", "/supported")
        kinds = data.get("kinds") if isinstance(data, dict) else data
        if not isinstance(kinds, list):
            raise ProtocolViolation(f"Malformed supported response: {data!r}")
        try:
            return [SupportedKind.model_validate(kind) for kind in kinds]
        except ValidationError as e:
            raise ProtocolViolation(f"Malformed supported kind: {e}") from e

    async def _post(self, path: str, payment_header: str, requirements: PaymentRequirements) -> Any:
        body = {
            "x402Version": X402_VERSION,
            "paymentHeader": payment_header,
            "paymentRequirements": requirements.to_dict(),
        }
        return await self._request("POST", path, json=body)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        logger.info(f"Facilitator request: {method} {url}")

        try:
            response = await self.http_client.request(
                method,
                url,
                timeout=self.timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Facilitator timeout: {method} {url}")
            raise FacilitatorUnreachable(f"Facilitator timed out: {url}") from e
        except httpx.RequestError as e:
            logger.warning(f"Facilitator unreachable: {method} {url} - {e}")
            raise FacilitatorUnreachable(f"Facilitator unavailable: {e}") from e

        if response.status_code >= 500:
            logger.warning(f"Facilitator returned {response.status_code} for {method} {url}")
            raise FacilitatorUnreachable(
                f"Facilitator unavailable: HTTP {response.status_code}",
                {"status_code": response.status_code},
            )

        # 4xx bodies still follow the response schema (e.g. isValid=false)
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolViolation(
                f"Facilitator returned non-JSON body (HTTP {response.status_code})"
            ) from e
