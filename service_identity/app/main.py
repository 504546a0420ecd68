"""
Identity bridge development host.

Wires configuration, the key cache, the token validator, the signing
service and the wallet/transaction components into the RPC surface, and
serves it over HTTP. Production backends call ``IdentityRpc.register_rpcs``
with their own registry instead.
"""

from typing import Any, Dict, Optional

import httpx
from fastapi import FastAPI, Request, Response

from shared.base_service import BaseService
from shared.config import IdentityConfig, get_config
from shared.errors import InvalidPayloadError, RpcNotFoundError, UnauthorizedError
from shared.logging import set_rpc_context
from shared.metrics import MetricsCollector
from .adapters.interfaces import AccountCollaborator, StorageCollaborator, TransactionBroadcaster, TransactionPolicy
from .adapters.memory import InMemoryAccounts, InMemoryStorage
from .jwks.client import JWKSClient
from .rpc.handlers import IdentityRpc, RpcContext, RpcRegistry
from .signing import build_signing_service
from .transactions.evm import TransactionBuilder
from .validation.token_validator import TokenValidator
from .wallet.provisioner import WalletProvisioner


class IdentityService(BaseService):
    """Identity bridge service implementation."""

    def __init__(
        self,
        config: IdentityConfig,
        *,
        storage: Optional[StorageCollaborator] = None,
        accounts: Optional[AccountCollaborator] = None,
        broadcaster: Optional[TransactionBroadcaster] = None,
        policy: Optional[TransactionPolicy] = None,
        metrics: Optional[MetricsCollector] = None,
        jwks_http_client: Optional[httpx.AsyncClient] = None,
        kms_http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__("identity", config, metrics)

        self.storage = storage or InMemoryStorage()
        self.accounts = accounts or InMemoryAccounts()

        self.jwks_client = JWKSClient(
            config.jwks_url,
            config.jwks_cache_ttl,
            algorithm=config.expected_algorithm,
            http_timeout=config.jwks_fetch_timeout,
            client=jwks_http_client,
            metrics=self.metrics,
        )
        self.token_validator = TokenValidator(
            self.jwks_client,
            config.issuer,
            config.audience,
            algorithm=config.expected_algorithm,
            token_use=config.expected_token_use,
            metrics=self.metrics,
        )

        self.signer = build_signing_service(config, client=kms_http_client) if config.wallet_enabled else None
        self.provisioner = WalletProvisioner(
            self.storage,
            self.signer,
            chain=config.wallet_chain,
            enabled=config.wallet_enabled,
            metrics=self.metrics,
        )
        self.builder = None
        if self.signer is not None:
            self.builder = TransactionBuilder(
                self.signer,
                config.evm_chain_id,
                default_gas_limit=config.evm_default_gas_limit,
                signing_timeout=config.signing_timeout,
                metrics=self.metrics,
            )

        self.rpc = IdentityRpc(
            self.token_validator,
            self.accounts,
            self.provisioner,
            self.builder,
            provider=config.provider,
            broadcaster=broadcaster,
            policy=policy,
        )
        self.registry = RpcRegistry()
        self.rpc.register_rpcs(self.registry)

        self._setup_identity_routes()

    def _setup_identity_routes(self):
        @self.app.get("/")
        async def root():
            return {"service": "identity", "version": "1.0.0"}

        @self.app.post("/v2/rpc/{rpc_id}")
        async def call_rpc(rpc_id: str, request: Request):
            """Invoke a registered RPC with the raw JSON body as payload."""
            handler = self.registry.get(rpc_id)
            if handler is None:
                raise RpcNotFoundError(details={"rpc_id": rpc_id})
            set_rpc_context(rpc_id)

            ctx = RpcContext(user_id=await self._session_user(request))
            body = await request.body()
            try:
                payload = body.decode("utf-8")
            except UnicodeDecodeError as e:
                raise InvalidPayloadError("Payload is not valid UTF-8") from e
            result = await handler(ctx, payload)
            return Response(content=result, media_type="application/json")

    async def _session_user(self, request: Request) -> Optional[str]:
        authorization = request.headers.get("Authorization")
        if not authorization:
            return None
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise UnauthorizedError("Invalid authorization header")
        user_id = await self.accounts.resolve_session(token.strip())
        if user_id is None:
            raise UnauthorizedError("Session is invalid or expired")
        return user_id

    def _check_dependencies(self) -> Dict[str, Any]:
        return {
            "jwks": "cached" if self.jwks_client.keys else "empty",
            "wallet": self.signer.name if self.signer is not None else "disabled",
        }

    async def shutdown(self) -> None:
        await self.jwks_client.close()
        if self.signer is not None:
            await self.signer.close()


def create_app(config: Optional[IdentityConfig] = None, **collaborators) -> FastAPI:
    """Build the host application; collaborators are passed to IdentityService."""
    service = IdentityService(config or get_config(), **collaborators)
    service.app.state.service = service
    return service.app


if __name__ == "__main__":
    IdentityService(get_config()).run()
