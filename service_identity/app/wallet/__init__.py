"""
Wallet provisioning package.
"""

from .provisioner import WALLET_COLLECTION, WalletProvisioner, WalletRecord

__all__ = ["WALLET_COLLECTION", "WalletProvisioner", "WalletRecord"]
