"""
Unit tests for EVM transaction building and signing.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from eth_account import Account
from eth_utils import keccak

from service_identity.app.identity.mapper import ExternalIdentity
from service_identity.app.signing import DerivedKeySigningService
from service_identity.app.transactions.evm import (
    EvmSigningRequest,
    TransactionBuilder,
    parse_quantity,
)
from shared.errors import InvalidPayloadError, SigningFailureError
from shared.metrics import MetricsCollector

ALICE = ExternalIdentity("cognito", "alice")
RECIPIENT = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


def request(**overrides) -> EvmSigningRequest:
    payload = {
        "to": RECIPIENT,
        "valueWei": "1000000000000000",
        "gasLimit": "21000",
        "maxFeePerGasWei": "30000000000",
        "maxPriorityFeePerGasWei": "1000000000",
        "nonce": "3",
    }
    payload.update(overrides)
    return EvmSigningRequest.parse({k: v for k, v in payload.items() if v is not None})


class TestParseQuantity:
    @pytest.mark.parametrize(
        "value,expected",
        [("0", 0), ("42", 42), ("0x2a", 42), ("0X2A", 42), (42, 42), (str(2 ** 256 - 1), 2 ** 256 - 1)],
    )
    def test_accepts(self, value, expected):
        assert parse_quantity(value, "valueWei") == expected

    @pytest.mark.parametrize("value", ["not-a-number", "-1", -1, "1.5", "0x", "", " 1", True, 1.5, None])
    def test_rejects(self, value):
        with pytest.raises(InvalidPayloadError):
            parse_quantity(value, "valueWei")

    def test_bounds(self):
        with pytest.raises(InvalidPayloadError):
            parse_quantity(str(2 ** 256), "valueWei")
        with pytest.raises(InvalidPayloadError):
            parse_quantity(hex(2 ** 64), "nonce", 2 ** 64)
        assert parse_quantity(hex(2 ** 64 - 1), "nonce", 2 ** 64) == 2 ** 64 - 1


class TestTransactionBuilder:
    """Test cases for TransactionBuilder."""

    @pytest.fixture
    def signer(self):
        signer = DerivedKeySigningService("test-master")
        signer.sign = AsyncMock(wraps=signer.sign)
        return signer

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("identity-test")

    @pytest.fixture
    def builder(self, signer, metrics):
        return TransactionBuilder(signer, chain_id=1, metrics=metrics)

    @pytest.mark.asyncio
    async def test_build_and_sign(self, builder, signer):
        signed = await builder.build_and_sign(ALICE, request())

        address = await signer.get_address(ALICE, "evm")
        assert signed.raw_transaction[0] == 2
        assert signed.sender == address
        assert Account.recover_transaction(signed.raw_transaction) == address
        assert signed.tx_hash == "0x" + keccak(signed.raw_transaction).hex()
        assert signed.raw_transaction_hex.startswith("0x02")

    @pytest.mark.asyncio
    async def test_hex_and_decimal_quantities_are_equivalent(self, builder):
        decimal = await builder.build_and_sign(ALICE, request())
        hexed = await builder.build_and_sign(
            ALICE,
            request(
                valueWei=hex(1000000000000000),
                gasLimit="0x5208",
                maxFeePerGasWei=hex(30000000000),
                maxPriorityFeePerGasWei=hex(1000000000),
                nonce="0x3",
            ),
        )
        assert decimal.tx_hash == hexed.tx_hash

    @pytest.mark.asyncio
    async def test_chain_id_changes_transaction(self, signer):
        mainnet = await TransactionBuilder(signer, chain_id=1).build_and_sign(ALICE, request())
        other = await TransactionBuilder(signer, chain_id=8453).build_and_sign(ALICE, request())

        assert mainnet.tx_hash != other.tx_hash

    @pytest.mark.asyncio
    async def test_defaults(self, signer):
        builder = TransactionBuilder(signer, chain_id=1, default_gas_limit=50000)
        minimal = EvmSigningRequest.parse({"to": RECIPIENT.lower(), "valueWei": "1"})
        explicit = request(valueWei="1", gasLimit="50000", maxFeePerGasWei="0", maxPriorityFeePerGasWei="0", nonce="0")

        assert (await builder.build_and_sign(ALICE, minimal)).tx_hash == (
            await builder.build_and_sign(ALICE, explicit)
        ).tx_hash

    @pytest.mark.asyncio
    async def test_calldata(self, builder):
        signed = await builder.build_and_sign(ALICE, request(data="0xa9059cbb"))
        assert Account.recover_transaction(signed.raw_transaction) == signed.sender

    @pytest.mark.asyncio
    async def test_invalid_value_never_reaches_signer(self, builder, signer):
        """valueWei="not-a-number" fails validation before any signing call."""
        with pytest.raises(InvalidPayloadError):
            await builder.build_and_sign(ALICE, request(valueWei="not-a-number"))

        signer.sign.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"to": "0xabc"},
            {"to": "not-an-address"},
            {"valueWei": "-5"},
            {"gasLimit": str(2 ** 64)},
            {"nonce": "0x10000000000000000"},
            {"maxFeePerGasWei": "1", "maxPriorityFeePerGasWei": "2"},
            {"data": "0xabc"},
            {"data": "0xzz"},
        ],
    )
    async def test_invalid_fields(self, builder, signer, overrides):
        with pytest.raises(InvalidPayloadError):
            await builder.build_and_sign(ALICE, request(**overrides))
        signer.sign.assert_not_awaited()

    def test_payload_shape_errors(self):
        with pytest.raises(InvalidPayloadError):
            EvmSigningRequest.parse({"valueWei": "1"})
        with pytest.raises(InvalidPayloadError):
            EvmSigningRequest.parse({"to": RECIPIENT, "valueWei": 1.5})

    @pytest.mark.asyncio
    async def test_signature_from_wrong_key_fails(self, builder, signer):
        impostor = DerivedKeySigningService("other-master")
        signer.sign = AsyncMock(side_effect=impostor.sign)

        with pytest.raises(SigningFailureError):
            await builder.build_and_sign(ALICE, request())

    @pytest.mark.asyncio
    async def test_malformed_signature_fails(self, builder, signer):
        signer.sign = AsyncMock(return_value=b"\x01" * 64)

        with pytest.raises(SigningFailureError):
            await builder.build_and_sign(ALICE, request())

    @pytest.mark.asyncio
    async def test_signing_timeout(self, signer):
        async def slow_sign(external_identity, digest):
            await asyncio.sleep(1)
            return b""

        signer.sign = slow_sign
        builder = TransactionBuilder(signer, chain_id=1, signing_timeout=0.01)

        with pytest.raises(SigningFailureError):
            await builder.build_and_sign(ALICE, request())

    @pytest.mark.asyncio
    async def test_signing_metrics(self, builder, signer, metrics):
        await builder.build_and_sign(ALICE, request())
        signer.sign = AsyncMock(side_effect=SigningFailureError())
        with pytest.raises(SigningFailureError):
            await builder.build_and_sign(ALICE, request())

        assert metrics.sample_value("transactions_signed_total", status="success") == 1
        assert metrics.sample_value("transactions_signed_total", status="error") == 1
