"""
Custodial wallet provisioning.
"""

import json
import time
from dataclasses import dataclass
from typing import Callable, Optional

from shared.errors import SignerNotConfiguredError, StorageError, WalletFeatureDisabledError, WalletNotFoundError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..adapters.interfaces import PERMISSION_NO_WRITE, PERMISSION_OWNER_READ, StorageCollaborator
from ..identity.mapper import ExternalIdentity
from ..signing.base import SigningService

WALLET_COLLECTION = "wallet"


@dataclass(frozen=True)
class WalletRecord:
    chain: str
    address: str
    created_at: int

    def to_json(self) -> str:
        return json.dumps({"chain": self.chain, "address": self.address, "createdAt": self.created_at})

    @classmethod
    def from_json(cls, value: str) -> "WalletRecord":
        try:
            data = json.loads(value)
            return cls(chain=str(data["chain"]), address=str(data["address"]), created_at=int(data["createdAt"]))
        except (ValueError, TypeError, KeyError) as e:
            raise StorageError("Stored wallet record is corrupt") from e


class WalletProvisioner:
    """Get-or-create wallets keyed by external identity.

    Records are written create-if-absent with owner-read and no client write.
    When two first logins race, the loser re-reads and returns the stored
    record; derivation is deterministic so both computed the same address.
    """

    def __init__(
        self,
        storage: StorageCollaborator,
        signer: Optional[SigningService],
        *,
        chain: str = "evm",
        enabled: bool = True,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.signer = signer
        self.chain = chain
        self.enabled = enabled
        self.metrics = metrics
        self._clock = clock
        self.logger = get_logger("identity.wallet")

    async def ensure_wallet(
        self,
        external_identity: ExternalIdentity,
        chain: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> WalletRecord:
        if not self.enabled:
            raise WalletFeatureDisabledError()

        key = str(external_identity)
        existing = await self._read(key, owner_id)
        if existing is not None:
            return existing

        chain = chain or self.chain
        if self.signer is None:
            raise SignerNotConfiguredError()
        address = await self.signer.get_address(external_identity, chain)
        record = WalletRecord(chain=chain, address=address, created_at=int(self._clock() * 1000))

        created = await self._write(key, record, owner_id)
        if not created:
            winner = await self._read(key, owner_id)
            if winner is None:
                raise StorageError("Wallet write was rejected but no record exists")
            self.logger.info("Wallet already created concurrently", external_id=key)
            return winner

        self.logger.info("Wallet provisioned", external_id=key, chain=chain, address=address)
        if self.metrics is not None:
            self.metrics.increment_counter("wallets_provisioned_total", chain=chain)
        return record

    async def get_wallet(self, external_identity: ExternalIdentity, owner_id: Optional[str] = None) -> WalletRecord:
        record = await self._read(str(external_identity), owner_id)
        if record is None:
            raise WalletNotFoundError()
        return record

    async def _read(self, key: str, owner_id: Optional[str]) -> Optional[WalletRecord]:
        try:
            value = await self.storage.read(WALLET_COLLECTION, key, owner_id)
        except StorageError:
            raise
        except Exception as e:
            self.logger.error("Wallet read failed", external_id=key, error=type(e).__name__)
            raise StorageError("Wallet read failed") from e
        if value is None:
            return None
        return WalletRecord.from_json(value)

    async def _write(self, key: str, record: WalletRecord, owner_id: Optional[str]) -> bool:
        try:
            return await self.storage.write(
                WALLET_COLLECTION,
                key,
                record.to_json(),
                owner_id=owner_id,
                permission_read=PERMISSION_OWNER_READ,
                permission_write=PERMISSION_NO_WRITE,
                if_absent=True,
            )
        except StorageError:
            raise
        except Exception as e:
            self.logger.error("Wallet write failed", external_id=key, error=type(e).__name__)
            raise StorageError("Wallet write failed") from e
