"""
EIP-1559 transaction building and signing for custodial wallets.

The builder never sees private keys: it hands the transaction's signing
hash to the signing service and attaches the returned signature.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from eth_account import Account
from eth_account.typed_transactions import TypedTransaction
from eth_utils import is_address, keccak, to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from shared.errors import IdentityBridgeError, InvalidPayloadError, SigningFailureError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..identity.mapper import ExternalIdentity
from ..signing.base import SIGNATURE_LENGTH, SigningService

UINT256_LIMIT = 2 ** 256
UINT64_LIMIT = 2 ** 64

DYNAMIC_FEE_TX_TYPE = 2

_DECIMAL = re.compile(r"^[0-9]+$")
_HEX_QUANTITY = re.compile(r"^0[xX][0-9a-fA-F]+$")
_HEX_DATA = re.compile(r"^(0[xX])?([0-9a-fA-F]{2})*$")

Quantity = Union[StrictInt, StrictStr]


class EvmSigningRequest(BaseModel):
    """signAndSend payload. Quantities are decimal or 0x-hex strings (or ints)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    to: StrictStr
    value_wei: Quantity = Field(alias="valueWei")
    data: Optional[StrictStr] = None
    gas_limit: Optional[Quantity] = Field(default=None, alias="gasLimit")
    max_fee_per_gas_wei: Optional[Quantity] = Field(default=None, alias="maxFeePerGasWei")
    max_priority_fee_per_gas_wei: Optional[Quantity] = Field(default=None, alias="maxPriorityFeePerGasWei")
    nonce: Optional[Quantity] = None

    @classmethod
    def parse(cls, payload: Dict[str, Any]) -> "EvmSigningRequest":
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            raise InvalidPayloadError("Invalid transaction payload", details={"fields": fields}) from e


@dataclass(frozen=True)
class EvmTransactionFields:
    to: str
    value: int
    data: bytes
    gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    nonce: int


@dataclass(frozen=True)
class SignedTransaction:
    raw_transaction: bytes
    tx_hash: str
    sender: str

    @property
    def raw_transaction_hex(self) -> str:
        return "0x" + self.raw_transaction.hex()


def parse_quantity(value: Any, field: str, limit: int = UINT256_LIMIT) -> int:
    """Parse a non-negative quantity given as an int, decimal digits or 0x-hex."""
    if isinstance(value, bool):
        raise InvalidPayloadError(f"{field} must be a number", details={"field": field})
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and _HEX_QUANTITY.match(value):
        number = int(value, 16)
    elif isinstance(value, str) and _DECIMAL.match(value):
        number = int(value, 10)
    else:
        raise InvalidPayloadError(f"{field} must be a decimal or 0x-hex number", details={"field": field})

    if number < 0:
        raise InvalidPayloadError(f"{field} must not be negative", details={"field": field})
    if number >= limit:
        raise InvalidPayloadError(f"{field} is out of range", details={"field": field})
    return number


def parse_data(value: Optional[str]) -> bytes:
    if not value:
        return b""
    if not _HEX_DATA.match(value):
        raise InvalidPayloadError("data must be even-length hex", details={"field": "data"})
    digits = value[2:] if value[:2] in ("0x", "0X") else value
    return bytes.fromhex(digits)


def validate_request(request: EvmSigningRequest, default_gas_limit: int) -> EvmTransactionFields:
    """Normalize a request; every failure is InvalidPayload."""
    if not is_address(request.to):
        raise InvalidPayloadError("to must be a 20-byte hex address", details={"field": "to"})

    value = parse_quantity(request.value_wei, "valueWei", UINT256_LIMIT)
    data = parse_data(request.data)

    gas = default_gas_limit
    if request.gas_limit is not None:
        gas = parse_quantity(request.gas_limit, "gasLimit", UINT64_LIMIT)

    max_fee = 0
    if request.max_fee_per_gas_wei is not None:
        max_fee = parse_quantity(request.max_fee_per_gas_wei, "maxFeePerGasWei", UINT256_LIMIT)

    priority_fee = 0
    if request.max_priority_fee_per_gas_wei is not None:
        priority_fee = parse_quantity(request.max_priority_fee_per_gas_wei, "maxPriorityFeePerGasWei", UINT256_LIMIT)

    if priority_fee > max_fee:
        raise InvalidPayloadError(
            "maxPriorityFeePerGasWei must not exceed maxFeePerGasWei",
            details={"field": "maxPriorityFeePerGasWei"},
        )

    nonce = 0
    if request.nonce is not None:
        nonce = parse_quantity(request.nonce, "nonce", UINT64_LIMIT)

    return EvmTransactionFields(
        to=to_checksum_address(request.to),
        value=value,
        data=data,
        gas=gas,
        max_fee_per_gas=max_fee,
        max_priority_fee_per_gas=priority_fee,
        nonce=nonce,
    )


class TransactionBuilder:
    """Builds and signs type-2 transactions for a single chain id."""

    def __init__(
        self,
        signer: SigningService,
        chain_id: int,
        *,
        default_gas_limit: int = 21000,
        signing_timeout: float = 10.0,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.signer = signer
        self.chain_id = chain_id
        self.default_gas_limit = default_gas_limit
        self.signing_timeout = signing_timeout
        self.metrics = metrics
        self.logger = get_logger("identity.transactions")

    def _transaction_dict(self, fields: EvmTransactionFields) -> Dict[str, Any]:
        return {
            "type": DYNAMIC_FEE_TX_TYPE,
            "chainId": self.chain_id,
            "nonce": fields.nonce,
            "maxPriorityFeePerGas": fields.max_priority_fee_per_gas,
            "maxFeePerGas": fields.max_fee_per_gas,
            "gas": fields.gas,
            "to": fields.to,
            "value": fields.value,
            "data": fields.data,
            "accessList": [],
        }

    def signing_hash(self, fields: EvmTransactionFields) -> bytes:
        return TypedTransaction.from_dict(self._transaction_dict(fields)).hash()

    async def build_and_sign(
        self, external_identity: ExternalIdentity, request: EvmSigningRequest
    ) -> SignedTransaction:
        fields = validate_request(request, self.default_gas_limit)

        try:
            signed = await self._sign(external_identity, fields)
        except IdentityBridgeError:
            self._record("error")
            raise

        self._record("success")
        self.logger.info(
            "Transaction signed",
            external_id=str(external_identity),
            tx_hash=signed.tx_hash,
            chain_id=self.chain_id,
        )
        return signed

    async def _sign(self, external_identity: ExternalIdentity, fields: EvmTransactionFields) -> SignedTransaction:
        digest = self.signing_hash(fields)

        try:
            signature = await asyncio.wait_for(
                self.signer.sign(external_identity, digest), timeout=self.signing_timeout
            )
        except asyncio.TimeoutError as e:
            raise SigningFailureError("Signing timed out") from e

        if len(signature) != SIGNATURE_LENGTH or signature[64] not in (0, 1):
            raise SigningFailureError("Signing service returned a malformed signature")

        signed_dict = self._transaction_dict(fields)
        signed_dict.update(
            {
                "v": signature[64],
                "r": int.from_bytes(signature[0:32], "big"),
                "s": int.from_bytes(signature[32:64], "big"),
            }
        )
        raw = TypedTransaction.from_dict(signed_dict).encode()

        expected = await self.signer.get_address(external_identity, "evm")
        sender = Account.recover_transaction(raw)
        if sender != expected:
            raise SigningFailureError("Signature does not match the wallet address")

        return SignedTransaction(raw_transaction=raw, tx_hash="0x" + keccak(raw).hex(), sender=sender)

    def _record(self, status: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("transactions_signed_total", status=status)
