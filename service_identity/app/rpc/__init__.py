"""
RPC surface exposed to the host backend.
"""

from .handlers import (
    RPC_GET_WALLET,
    RPC_LINK,
    RPC_LOGIN,
    RPC_SIGN_AND_SEND,
    IdentityRpc,
    RpcContext,
    RpcRegistry,
    parse_payload,
)

__all__ = [
    "RPC_GET_WALLET",
    "RPC_LINK",
    "RPC_LOGIN",
    "RPC_SIGN_AND_SEND",
    "IdentityRpc",
    "RpcContext",
    "RpcRegistry",
    "parse_payload",
]
