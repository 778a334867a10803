"""
Tests for the XRPL ledger client.

xrpl-py network calls are patched; nothing leaves the process.
"""
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from xrpl.models.amounts import IssuedCurrencyAmount
from xrpl.models.response import Response, ResponseStatus
from xrpl.wallet import Wallet

from rewardai.domain.errors import (
    InvalidInput,
    LedgerConfirmationFailed,
    LedgerError,
    LedgerSubmissionFailed,
)
from rewardai.services.ledger import (
    NETWORK_URLS,
    LedgerClient,
    XRPLLedgerClient,
    XRPLNetwork,
    build_amount,
    parse_asset,
)
from tests.conftest import ALICE, VAULT

ISSUER = VAULT


def rpc_response(result, status=ResponseStatus.SUCCESS):
    return Response(status=status, result=result)


@pytest.fixture
def wallet():
    return Wallet.create()


@pytest.fixture
def client(wallet):
    ledger = XRPLLedgerClient(XRPLNetwork.TESTNET, wallet_seed=wallet.seed, poll_interval_seconds=0)
    ledger._client = MagicMock()
    ledger._client.request = AsyncMock()
    return ledger


class TestAssets:

    def test_native(self):
        assert parse_asset("XRP") == ("XRP", None)
        assert parse_asset("xrp") == ("XRP", None)

    def test_issued_currency(self):
        assert parse_asset(f"USD.{ISSUER}") == ("USD", ISSUER)

    @pytest.mark.parametrize("asset", ["USD", "USD.", ".rHb9", "USD.not-an-issuer"])
    def test_malformed(self, asset):
        with pytest.raises(InvalidInput):
            parse_asset(asset)

    def test_xrp_amount_in_drops(self):
        assert build_amount("XRP", Decimal("1.5")) == "1500000"

    def test_issued_amount(self):
        amount = build_amount(f"USD.{ISSUER}", Decimal("12.25"))
        assert amount == IssuedCurrencyAmount(currency="USD", issuer=ISSUER, value="12.25")


class TestClientSetup:

    def test_default_network_url(self):
        assert XRPLLedgerClient().url == NETWORK_URLS[XRPLNetwork.TESTNET]

    def test_custom_url(self):
        assert XRPLLedgerClient(custom_url="http://localhost:5005").url == "http://localhost:5005"

    def test_satisfies_protocol(self):
        assert isinstance(XRPLLedgerClient(), LedgerClient)

    def test_vault_address(self, wallet):
        assert XRPLLedgerClient(wallet_seed=wallet.seed).vault_address == wallet.classic_address
        assert XRPLLedgerClient().vault_address is None

    def test_address_validation(self):
        ledger = XRPLLedgerClient()
        assert ledger.is_valid_address(ALICE)
        assert not ledger.is_valid_address("bogus")
        assert not ledger.is_valid_address(None)


class TestBalance:

    @pytest.mark.asyncio
    async def test_xrp_balance(self, client):
        client._client.request.return_value = rpc_response({"account_data": {"Balance": "25000000"}})

        assert await client.get_balance(ALICE, "XRP") == Decimal("25")

    @pytest.mark.asyncio
    async def test_trust_line_balance(self, client):
        client._client.request.return_value = rpc_response({"lines": [
            {"currency": "USD", "balance": "10.5"},
            {"currency": "EUR", "balance": "99"},
        ]})

        assert await client.get_balance(ALICE, f"USD.{ISSUER}") == Decimal("10.5")

    @pytest.mark.asyncio
    async def test_lookup_error(self, client):
        client._client.request.return_value = rpc_response({"error": "actNotFound"}, ResponseStatus.ERROR)

        with pytest.raises(LedgerError):
            await client.get_balance(ALICE, "XRP")


class TestSubmit:

    @pytest.mark.asyncio
    async def test_no_wallet(self):
        with pytest.raises(LedgerSubmissionFailed):
            await XRPLLedgerClient().submit_transfer(VAULT, ALICE, "XRP", Decimal(1))

    @pytest.mark.asyncio
    async def test_source_must_be_wallet(self, client):
        with pytest.raises(LedgerSubmissionFailed):
            await client.submit_transfer(VAULT, ALICE, "XRP", Decimal(1))

    @pytest.mark.asyncio
    async def test_accepted_returns_hash(self, client, wallet):
        signed = MagicMock()
        signed.get_hash.return_value = "HASH1"

        with patch("rewardai.services.ledger.autofill_and_sign", AsyncMock(return_value=signed)) as sign, \
                patch("rewardai.services.ledger.submit", AsyncMock(
                    return_value=rpc_response({"engine_result": "tesSUCCESS"}))):
            receipt = await client.submit_transfer(wallet.classic_address, ALICE, "XRP", Decimal("2"))

        assert receipt == "HASH1"
        payment = sign.call_args.args[0]
        assert payment.destination == ALICE
        assert payment.amount == "2000000"

    @pytest.mark.asyncio
    async def test_rejected_engine_result(self, client, wallet):
        signed = MagicMock()
        with patch("rewardai.services.ledger.autofill_and_sign", AsyncMock(return_value=signed)), \
                patch("rewardai.services.ledger.submit", AsyncMock(return_value=rpc_response(
                    {"engine_result": "tecUNFUNDED_PAYMENT", "engine_result_message": "Insufficient XRP"}))):
            with pytest.raises(LedgerSubmissionFailed, match="tecUNFUNDED_PAYMENT"):
                await client.submit_transfer(wallet.classic_address, ALICE, "XRP", Decimal("2"))

    @pytest.mark.asyncio
    async def test_rpc_error(self, client, wallet):
        with patch("rewardai.services.ledger.autofill_and_sign", AsyncMock(side_effect=ConnectionError("down"))):
            with pytest.raises(LedgerSubmissionFailed):
                await client.submit_transfer(wallet.classic_address, ALICE, "XRP", Decimal("2"))


class TestConfirm:

    @pytest.mark.asyncio
    async def test_polls_until_validated(self, client):
        client._client.request.side_effect = [
            rpc_response({"validated": False}),
            ConnectionError("blip"),
            rpc_response({"validated": True, "meta": {"TransactionResult": "tesSUCCESS"}}),
        ]

        await client.confirm_transfer("HASH1")

        assert client._client.request.await_count == 3

    @pytest.mark.asyncio
    async def test_validated_failure(self, client):
        client._client.request.return_value = rpc_response(
            {"validated": True, "meta": {"TransactionResult": "tecPATH_DRY"}}
        )

        with pytest.raises(LedgerConfirmationFailed, match="tecPATH_DRY"):
            await client.confirm_transfer("HASH1")
