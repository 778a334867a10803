"""
XRPL ledger client for distribution transfers.

Based on the official XRPL Python send-payment tutorial:
https://xrpl.org/docs/tutorials/python/send-payments/send-a-single-xrp-payment

Handles:
- Address validation with the xrpl-py address codec
- Balance queries for XRP and issued currencies
- Payment submission signed by the vault wallet
- Confirmation by polling until the transaction is validated
"""

import asyncio
import logging
from decimal import Decimal
from enum import Enum
from typing import Protocol, runtime_checkable

from xrpl.asyncio.clients import AsyncJsonRpcClient
from xrpl.asyncio.transaction import autofill_and_sign, submit
from xrpl.models import AccountInfo, AccountLines, Payment, Tx
from xrpl.models.amounts import Amount, IssuedCurrencyAmount
from xrpl.utils import drops_to_xrp, xrp_to_drops
from xrpl.wallet import Wallet

from rewardai.domain.addresses import is_valid_address
from rewardai.domain.errors import (
    InvalidInput,
    LedgerConfirmationFailed,
    LedgerError,
    LedgerSubmissionFailed,
)

logger = logging.getLogger(__name__)


class XRPLNetwork(Enum):
    """Supported XRPL networks."""
    MAINNET = "mainnet"
    TESTNET = "testnet"
    DEVNET = "devnet"


# JSON-RPC endpoints (more reliable than WebSocket for quick operations)
NETWORK_URLS = {
    XRPLNetwork.MAINNET: "https://xrplcluster.com",
    XRPLNetwork.TESTNET: "https://s.altnet.rippletest.net:51234",
    XRPLNetwork.DEVNET: "https://s.devnet.rippletest.net:51234",
}

NATIVE_ASSET = "XRP"

# Engine results that mean the transaction was accepted for processing
ACCEPTED_ENGINE_RESULTS = {"tesSUCCESS", "terQUEUED"}


@runtime_checkable
class LedgerClient(Protocol):
    """
    Capability interface the distribution executor consumes.

    Production uses XRPLLedgerClient; tests substitute a deterministic fake.
    """

    def is_valid_address(self, address: str) -> bool:
        ...

    async def get_balance(self, address: str, asset: str) -> Decimal:
        ...

    async def submit_transfer(
        self,
        source: str,
        destination: str,
        asset: str,
        amount: Decimal,
    ) -> str:
        """Submit a transfer and return its receipt id, or raise LedgerSubmissionFailed."""
        ...

    async def confirm_transfer(self, receipt_id: str) -> None:
        """Wait until the transfer is committed, or raise LedgerConfirmationFailed."""
        ...


def parse_asset(asset: str) -> tuple[str, str | None]:
    """
    Split an asset identifier into currency and issuer.

    "XRP" is the native asset; issued currencies are written
    "CURRENCY.ISSUER" (e.g. "USD.rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh").
    """
    if asset.upper() == NATIVE_ASSET:
        return NATIVE_ASSET, None

    currency, sep, issuer = asset.partition(".")
    if not sep or not currency or not is_valid_address(issuer):
        raise InvalidInput(f"Asset must be 'XRP' or 'CURRENCY.ISSUER', got {asset!r}")
    return currency, issuer


def build_amount(asset: str, amount: Decimal) -> Amount:
    """Build an xrpl-py amount: drops for XRP, IssuedCurrencyAmount otherwise."""
    currency, issuer = parse_asset(asset)
    if issuer is None:
        return xrp_to_drops(amount)
    return IssuedCurrencyAmount(currency=currency, issuer=issuer, value=str(amount))


class XRPLLedgerClient:
    """
    LedgerClient backed by the XRP Ledger JSON-RPC API.

    Uses AsyncJsonRpcClient so transfers can be awaited with a timeout
    by the distribution executor.

    Example:
        client = XRPLLedgerClient(network=XRPLNetwork.TESTNET, wallet_seed="sEdV...")
        receipt = await client.submit_transfer(vault, recipient, "XRP", Decimal("10"))
        await client.confirm_transfer(receipt)
    """

    def __init__(
        self,
        network: XRPLNetwork = XRPLNetwork.TESTNET,
        wallet_seed: str | None = None,
        custom_url: str | None = None,
        poll_interval_seconds: float = 1.0,
    ) -> None:
        """
        Initialize XRPL ledger client.

        Args:
            network: XRPL network to connect to
            wallet_seed: Vault wallet seed (None for read-only use)
            custom_url: Override network URL (for testing)
            poll_interval_seconds: Delay between confirmation polls
        """
        self.network = network
        self.url = custom_url or NETWORK_URLS[network]
        self.poll_interval_seconds = poll_interval_seconds
        self._wallet = Wallet.from_seed(wallet_seed) if wallet_seed else None
        self._client: AsyncJsonRpcClient | None = None

    def _get_client(self) -> AsyncJsonRpcClient:
        """Get or create JSON-RPC client."""
        if self._client is None:
            self._client = AsyncJsonRpcClient(self.url)
        return self._client

    @property
    def vault_address(self) -> str | None:
        return self._wallet.classic_address if self._wallet else None

    def is_valid_address(self, address: str) -> bool:
        return is_valid_address(address)

    async def get_balance(self, address: str, asset: str = NATIVE_ASSET) -> Decimal:
        """
        Get the validated balance of an account.

        Args:
            address: XRPL account address (r...)
            asset: "XRP" or "CURRENCY.ISSUER"

        Returns:
            Balance in whole units of the asset
        """
        currency, issuer = parse_asset(asset)
        client = self._get_client()

        if issuer is None:
            response = await client.request(AccountInfo(account=address, ledger_index="validated"))
            if not response.is_successful():
                raise LedgerError(f"Balance lookup failed for {address}: {response.result}")
            return drops_to_xrp(response.result["account_data"]["Balance"])

        response = await client.request(
            AccountLines(account=address, peer=issuer, ledger_index="validated")
        )
        if not response.is_successful():
            raise LedgerError(f"Trust line lookup failed for {address}: {response.result}")

        balance = Decimal(0)
        for line in response.result.get("lines", []):
            if line.get("currency") == currency:
                balance += Decimal(line.get("balance", "0"))
        return balance

    async def submit_transfer(
        self,
        source: str,
        destination: str,
        asset: str,
        amount: Decimal,
    ) -> str:
        """
        Sign and submit a Payment from the vault wallet.

        Returns:
            Transaction hash used as the receipt id

        Raises:
            LedgerSubmissionFailed: No wallet, wrong source, or the
                ledger did not accept the transaction
        """
        if self._wallet is None:
            raise LedgerSubmissionFailed("No wallet seed configured for signing")
        if source != self._wallet.classic_address:
            raise LedgerSubmissionFailed(
                f"Source {source} does not match signing wallet {self._wallet.classic_address}"
            )

        try:
            payment = Payment(
                account=source,
                destination=destination,
                amount=build_amount(asset, amount),
            )
            client = self._get_client()
            signed = await autofill_and_sign(payment, client, self._wallet)
            response = await submit(signed, client)
        except InvalidInput as e:
            raise LedgerSubmissionFailed(str(e)) from e
        except Exception as e:
            logger.exception(f"Payment submission to {destination} failed")
            raise LedgerSubmissionFailed(f"Submission error: {e}") from e

        engine_result = response.result.get("engine_result", "unknown")
        if engine_result not in ACCEPTED_ENGINE_RESULTS:
            message = response.result.get("engine_result_message", "")
            logger.warning(f"Payment to {destination} rejected: {engine_result} {message}")
            raise LedgerSubmissionFailed(
                f"Ledger rejected payment: {engine_result}",
                {"message": message} if message else None,
            )

        tx_hash = signed.get_hash()
        logger.info(f"Payment submitted: {amount} {asset} -> {destination} ({tx_hash})")
        return tx_hash

    async def confirm_transfer(self, receipt_id: str) -> None:
        """
        Poll until the transaction is in a validated ledger.

        Polls forever; the caller bounds the wait with a timeout.

        Raises:
            LedgerConfirmationFailed: Validated with a non-success result
        """
        client = self._get_client()

        while True:
            try:
                response = await client.request(Tx(transaction=receipt_id))
            except Exception as e:
                # Transient RPC errors: keep polling until the caller's timeout
                logger.warning(f"Confirmation poll for {receipt_id} failed: {e}")
                response = None

            if response is not None and response.is_successful() and response.result.get("validated"):
                result = response.result.get("meta", {}).get("TransactionResult")
                if result == "tesSUCCESS":
                    logger.info(f"Payment confirmed: {receipt_id}")
                    return
                raise LedgerConfirmationFailed(
                    f"Transaction {receipt_id} failed with {result}",
                    {"tx_hash": receipt_id},
                )

            await asyncio.sleep(self.poll_interval_seconds)
