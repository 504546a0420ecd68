"""
Shared configuration management for the identity bridge.
"""

from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="IDENTITY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8020)


class IdentityConfig(BaseConfig):
    """Settings for token verification, wallets and transaction signing."""

    # Identity provider
    issuer: str
    audience: str
    provider: str = Field(default="cognito")
    expected_algorithm: str = Field(default="RS256")
    expected_token_use: str = Field(default="id")

    # Key discovery
    jwks_cache_ttl: int = Field(default=3600, ge=0)
    jwks_fetch_timeout: float = Field(default=5.0, gt=0)

    # Wallets
    wallet_enabled: bool = Field(default=False)
    wallet_chain: str = Field(default="evm")
    wallet_master_key_ref: Optional[str] = Field(default=None)
    wallet_derivation_path: str = Field(default="m/44'/60'/0'/0")
    wallet_signer: str = Field(default="derived")

    # Key-management service
    kms_url: Optional[str] = Field(default=None)
    kms_timeout: float = Field(default=5.0, gt=0)
    signing_timeout: float = Field(default=10.0, gt=0)

    # EVM
    evm_chain_id: int = Field(default=1, gt=0)
    evm_default_gas_limit: int = Field(default=21000, gt=0)

    @model_validator(mode="after")
    def _check_wallet_settings(self) -> "IdentityConfig":
        if not self.issuer:
            raise ValueError("issuer is required")
        if not self.audience:
            raise ValueError("audience is required")
        if self.wallet_enabled and not self.wallet_master_key_ref:
            raise ValueError("wallet_master_key_ref is required when wallets are enabled")
        return self

    @property
    def jwks_url(self) -> str:
        return f"{self.issuer}/.well-known/jwks.json"


def get_config(**overrides) -> IdentityConfig:
    """Load configuration from the environment, applying explicit overrides."""
    return IdentityConfig(**overrides)
