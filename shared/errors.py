"""
Shared error handling for the identity bridge.

Every error carries a stable machine-readable ``code`` and a human-readable
``message``. Messages never include key material, raw upstream responses or
stack traces; ``details`` is for safe, structured context only.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class IdentityBridgeError(Exception):
    """Base exception for identity bridge components."""

    code = "INTERNAL_ERROR"
    default_message = "Internal error"
    status_code = 500

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(code=self.code, message=self.message, details=self.details)


# Token verification

class TokenInvalidError(IdentityBridgeError):
    code = "TOKEN_INVALID"
    default_message = "Token is malformed or its signature could not be verified"
    status_code = 401


class TokenExpiredError(IdentityBridgeError):
    code = "TOKEN_EXPIRED"
    default_message = "Token has expired"
    status_code = 401


class IssuerMismatchError(IdentityBridgeError):
    code = "ISSUER_MISMATCH"
    default_message = "Token issuer does not match the configured issuer"
    status_code = 401


class AudienceMismatchError(IdentityBridgeError):
    code = "AUDIENCE_MISMATCH"
    default_message = "Token audience does not include the configured audience"
    status_code = 401


class WrongTokenTypeError(IdentityBridgeError):
    code = "WRONG_TOKEN_TYPE"
    default_message = "Token is not an identity token"
    status_code = 401


class MissingSubjectError(IdentityBridgeError):
    code = "MISSING_SUBJECT"
    default_message = "Token has no subject"
    status_code = 401


class KeyFetchError(IdentityBridgeError):
    code = "KEY_FETCH_FAILURE"
    default_message = "Signing keys could not be fetched from the identity provider"
    status_code = 503


# Wallets and signing

class WalletFeatureDisabledError(IdentityBridgeError):
    code = "WALLET_FEATURE_DISABLED"
    default_message = "Wallet feature is not enabled"
    status_code = 403


class WalletNotFoundError(IdentityBridgeError):
    code = "WALLET_NOT_FOUND"
    default_message = "Wallet not found"
    status_code = 404


class SigningFailureError(IdentityBridgeError):
    code = "SIGNING_FAILURE"
    default_message = "Signing failed"
    status_code = 502


class SignerNotConfiguredError(IdentityBridgeError):
    code = "SIGNER_NOT_CONFIGURED"
    default_message = "Signing backend is not configured"
    status_code = 500


class UnsupportedChainError(IdentityBridgeError):
    code = "UNSUPPORTED_CHAIN"
    default_message = "Unsupported chain"
    status_code = 400


class StorageError(IdentityBridgeError):
    code = "STORAGE_ERROR"
    default_message = "Storage operation failed"
    status_code = 500


# Request handling

class InvalidPayloadError(IdentityBridgeError):
    code = "INVALID_PAYLOAD"
    default_message = "Invalid payload"
    status_code = 400


class UnauthorizedError(IdentityBridgeError):
    code = "UNAUTHORIZED"
    default_message = "A session is required"
    status_code = 401


class AccountConflictError(IdentityBridgeError):
    code = "ACCOUNT_CONFLICT"
    default_message = "External identity is already linked to another account"
    status_code = 409


class RpcNotFoundError(IdentityBridgeError):
    code = "NOT_FOUND"
    default_message = "Unknown RPC"
    status_code = 404
