"""
Transaction building package.
"""

from .evm import EvmSigningRequest, SignedTransaction, TransactionBuilder, parse_quantity

__all__ = ["EvmSigningRequest", "SignedTransaction", "TransactionBuilder", "parse_quantity"]
