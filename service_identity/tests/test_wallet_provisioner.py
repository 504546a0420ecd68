"""
Unit tests for wallet provisioning.
"""

import json
from unittest.mock import AsyncMock

import pytest

from service_identity.app.adapters.memory import InMemoryStorage
from service_identity.app.identity.mapper import ExternalIdentity
from service_identity.app.signing import DerivedKeySigningService
from service_identity.app.wallet.provisioner import WALLET_COLLECTION, WalletProvisioner, WalletRecord
from shared.errors import (
    StorageError,
    UnsupportedChainError,
    WalletFeatureDisabledError,
    WalletNotFoundError,
)
from shared.metrics import MetricsCollector

USER_42 = ExternalIdentity("cognito", "user-42")
USER_7 = ExternalIdentity("cognito", "user-7")


class RacingStorage(InMemoryStorage):
    """Storage where another writer lands between our read and our write."""

    def __init__(self, winner: WalletRecord):
        super().__init__()
        self.winner = winner
        self.reads = 0

    async def read(self, collection, key, owner_id=None):
        self.reads += 1
        value = await super().read(collection, key, owner_id)
        if self.reads == 1:
            await super().write(collection, key, self.winner.to_json(), if_absent=True)
        return value


class TestWalletProvisioner:
    """Test cases for WalletProvisioner."""

    @pytest.fixture
    def storage(self):
        return InMemoryStorage()

    @pytest.fixture
    def signer(self):
        signer = DerivedKeySigningService("test-master")
        signer.get_address = AsyncMock(wraps=signer.get_address)
        return signer

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("identity-test")

    @pytest.fixture
    def provisioner(self, storage, signer, metrics):
        return WalletProvisioner(storage, signer, metrics=metrics, clock=lambda: 1_700_000_000.123)

    @pytest.mark.asyncio
    async def test_ensure_wallet_creates_record(self, provisioner, storage):
        record = await provisioner.ensure_wallet(USER_42, owner_id="account-1")

        assert record.chain == "evm"
        assert record.address.startswith("0x")
        assert record.created_at == 1_700_000_000_123

        stored = storage.get_object(WALLET_COLLECTION, "cognito:user-42")
        assert json.loads(stored.value) == {
            "chain": "evm",
            "address": record.address,
            "createdAt": 1_700_000_000_123,
        }
        assert stored.owner_id == "account-1"
        assert stored.permission_read == 1
        assert stored.permission_write == 0

    @pytest.mark.asyncio
    async def test_ensure_wallet_is_idempotent(self, provisioner, signer):
        """The second call returns the stored record without deriving again."""
        first = await provisioner.ensure_wallet(USER_42)
        second = await provisioner.ensure_wallet(USER_42)

        assert first == second
        assert signer.get_address.await_count == 1

    @pytest.mark.asyncio
    async def test_distinct_identities_get_distinct_wallets(self, provisioner):
        a = await provisioner.ensure_wallet(USER_42)
        b = await provisioner.ensure_wallet(USER_7)

        assert a.address != b.address

    @pytest.mark.asyncio
    async def test_unsupported_chain_writes_nothing(self, provisioner):
        with pytest.raises(UnsupportedChainError):
            await provisioner.ensure_wallet(USER_7, chain="unsupported-chain")

        with pytest.raises(WalletNotFoundError):
            await provisioner.get_wallet(USER_7)

    @pytest.mark.asyncio
    async def test_disabled_feature(self, storage, signer):
        provisioner = WalletProvisioner(storage, signer, enabled=False)

        with pytest.raises(WalletFeatureDisabledError):
            await provisioner.ensure_wallet(USER_42)
        signer.get_address.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lost_race_returns_stored_winner(self, signer):
        """When the conditional write loses, the stored record wins."""
        address = await DerivedKeySigningService("test-master").get_address(USER_42, "evm")
        winner = WalletRecord(chain="evm", address=address, created_at=1)
        storage = RacingStorage(winner)
        provisioner = WalletProvisioner(storage, signer)

        record = await provisioner.ensure_wallet(USER_42)

        assert record == winner
        assert storage.reads == 2
        assert WalletRecord.from_json(await storage.read(WALLET_COLLECTION, str(USER_42))) == winner

    @pytest.mark.asyncio
    async def test_get_wallet(self, provisioner):
        created = await provisioner.ensure_wallet(USER_42)
        assert await provisioner.get_wallet(USER_42) == created

    @pytest.mark.asyncio
    async def test_get_wallet_not_found(self, provisioner):
        with pytest.raises(WalletNotFoundError):
            await provisioner.get_wallet(USER_42)

    @pytest.mark.asyncio
    async def test_corrupt_record_is_storage_error(self, provisioner, storage):
        await storage.write(WALLET_COLLECTION, str(USER_42), "{not json")

        with pytest.raises(StorageError):
            await provisioner.get_wallet(USER_42)

    @pytest.mark.asyncio
    async def test_storage_failure_is_wrapped(self, signer):
        storage = AsyncMock()
        storage.read.side_effect = ConnectionError("storage down")
        provisioner = WalletProvisioner(storage, signer)

        with pytest.raises(StorageError) as exc_info:
            await provisioner.ensure_wallet(USER_42)
        assert "storage down" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_provisioned_metric(self, provisioner, metrics):
        await provisioner.ensure_wallet(USER_42)
        await provisioner.ensure_wallet(USER_42)

        assert metrics.sample_value("wallets_provisioned_total", chain="evm") == 1
