"""
Backend RPC handlers for the identity bridge.

Every handler takes the caller context and a JSON payload string and
returns a JSON string. Errors propagate as IdentityBridgeError subclasses;
the host maps them to its own error envelope.
"""

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from shared.errors import (
    IdentityBridgeError,
    InvalidPayloadError,
    UnauthorizedError,
    WalletFeatureDisabledError,
    WalletNotFoundError,
)
from shared.logging import get_logger, set_user_context
from ..adapters.interfaces import AccountCollaborator, TransactionBroadcaster, TransactionPolicy
from ..identity.mapper import ExternalIdentity, extract_user_attributes, select_username, to_external_identity
from ..transactions.evm import EvmSigningRequest, TransactionBuilder
from ..validation.token_validator import TokenValidator, VerifiedIdentity
from ..wallet.provisioner import WalletProvisioner, WalletRecord
from .models import LinkRequest, LinkResponse, LoginRequest, LoginResponse, SignAndSendResponse, WalletView

M = TypeVar("M", bound=BaseModel)

RpcHandler = Callable[["RpcContext", str], Awaitable[str]]

RPC_LOGIN = "rpc_cognito_login"
RPC_LINK = "rpc_link_cognito"
RPC_GET_WALLET = "rpc_get_wallet"
RPC_SIGN_AND_SEND = "rpc_sign_and_send"


@dataclass(frozen=True)
class RpcContext:
    """Caller context supplied by the host; ``user_id`` is None without a session."""

    user_id: Optional[str] = None


class RpcRegistry:
    """Name to handler table, the shape host runtimes register RPCs into."""

    def __init__(self):
        self._handlers: Dict[str, RpcHandler] = {}

    def register_rpc(self, rpc_id: str, handler: RpcHandler) -> None:
        self._handlers[rpc_id] = handler

    def get(self, rpc_id: str) -> Optional[RpcHandler]:
        return self._handlers.get(rpc_id)

    def __contains__(self, rpc_id: str) -> bool:
        return rpc_id in self._handlers

    def names(self):
        return sorted(self._handlers)


def parse_payload(payload: Optional[str], model: Type[M]) -> M:
    if payload is None or not payload.strip():
        data: Any = {}
    else:
        try:
            data = json.loads(payload)
        except ValueError as e:
            raise InvalidPayloadError("Payload is not valid JSON") from e
    if not isinstance(data, dict):
        raise InvalidPayloadError("Payload must be a JSON object")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise InvalidPayloadError("Invalid payload", details={"fields": fields}) from e


def _wallet_view(record: Optional[WalletRecord]) -> Optional[WalletView]:
    if record is None:
        return None
    return WalletView(address=record.address, chain=record.chain)


class IdentityRpc:
    """login / link / getWallet / signAndSend."""

    def __init__(
        self,
        validator: TokenValidator,
        accounts: AccountCollaborator,
        provisioner: WalletProvisioner,
        builder: Optional[TransactionBuilder] = None,
        *,
        provider: str = "cognito",
        broadcaster: Optional[TransactionBroadcaster] = None,
        policy: Optional[TransactionPolicy] = None,
    ):
        self.validator = validator
        self.accounts = accounts
        self.provisioner = provisioner
        self.builder = builder
        self.provider = provider
        self.broadcaster = broadcaster
        self.policy = policy
        self.logger = get_logger("identity.rpc")

    @property
    def wallet_enabled(self) -> bool:
        return self.provisioner.enabled

    def register_rpcs(self, registry: RpcRegistry) -> None:
        registry.register_rpc(RPC_LOGIN, self.login)
        registry.register_rpc(RPC_LINK, self.link)
        registry.register_rpc(RPC_GET_WALLET, self.get_wallet)
        if self.wallet_enabled:
            registry.register_rpc(RPC_SIGN_AND_SEND, self.sign_and_send)
        self.logger.info("RPCs registered", rpcs=registry.names())

    async def login(self, ctx: RpcContext, payload: str) -> str:
        request = parse_payload(payload, LoginRequest)

        identity = await self.validator.verify_token(request.id_token)
        external_identity = to_external_identity(identity, self.provider)

        user_id = await self.accounts.authenticate_custom(
            str(external_identity),
            username=select_username(identity, request.username),
            create=request.create,
        )
        set_user_context(user_id)

        await self._sync_metadata(user_id, identity)
        wallet = await self._provision_wallet(user_id, external_identity)

        session_token = await self.accounts.generate_session_token(user_id)
        self.logger.info("Login succeeded", user_id=user_id, has_wallet=wallet is not None)
        return LoginResponse(session_token=session_token, wallet=_wallet_view(wallet)).to_payload()

    async def link(self, ctx: RpcContext, payload: str) -> str:
        user_id = self._require_session(ctx)
        request = parse_payload(payload, LinkRequest)

        identity = await self.validator.verify_token(request.id_token)
        external_identity = to_external_identity(identity, self.provider)

        await self.accounts.link_custom(user_id, str(external_identity))
        await self._sync_metadata(user_id, identity)
        wallet = await self._provision_wallet(user_id, external_identity)

        self.logger.info("Identity linked", user_id=user_id)
        return LinkResponse(success=True, wallet=_wallet_view(wallet)).to_payload()

    async def get_wallet(self, ctx: RpcContext, payload: str) -> str:
        user_id = self._require_session(ctx)
        external_identity = await self._linked_identity(user_id)
        record = await self.provisioner.get_wallet(external_identity, owner_id=user_id)
        return WalletView(address=record.address, chain=record.chain).to_payload()

    async def sign_and_send(self, ctx: RpcContext, payload: str) -> str:
        user_id = self._require_session(ctx)
        if not self.wallet_enabled or self.builder is None:
            raise WalletFeatureDisabledError()

        request = parse_payload(payload, EvmSigningRequest)
        external_identity = await self._linked_identity(user_id)
        await self.provisioner.get_wallet(external_identity, owner_id=user_id)

        if self.policy is not None:
            await self.policy.check(user_id, request)

        signed = await self.builder.build_and_sign(external_identity, request)

        if self.broadcaster is not None:
            await self.broadcaster.broadcast(user_id, signed)

        return SignAndSendResponse(tx_hash=signed.tx_hash).to_payload()

    @staticmethod
    def _require_session(ctx: RpcContext) -> str:
        if ctx is None or not ctx.user_id:
            raise UnauthorizedError()
        set_user_context(ctx.user_id)
        return ctx.user_id

    async def _linked_identity(self, user_id: str) -> ExternalIdentity:
        custom_id = await self.accounts.get_external_identity(user_id)
        if not custom_id:
            raise WalletNotFoundError("No external identity linked to this account")
        try:
            return ExternalIdentity.parse(custom_id)
        except ValueError as e:
            raise WalletNotFoundError("No external identity linked to this account") from e

    async def _sync_metadata(self, user_id: str, identity: VerifiedIdentity) -> None:
        attributes = extract_user_attributes(identity)
        if not attributes:
            return
        try:
            await self.accounts.update_metadata(user_id, attributes)
        except Exception as e:
            self.logger.warning("Failed to sync account metadata", user_id=user_id, error=str(e))

    async def _provision_wallet(self, user_id: str, external_identity: ExternalIdentity) -> Optional[WalletRecord]:
        if not self.wallet_enabled:
            return None
        try:
            return await self.provisioner.ensure_wallet(external_identity, owner_id=user_id)
        except IdentityBridgeError as e:
            self.logger.warning("Wallet provisioning failed", user_id=user_id, code=e.code, error=e.message)
        except Exception as e:
            self.logger.error("Wallet provisioning failed", user_id=user_id, error=type(e).__name__)
        return None
