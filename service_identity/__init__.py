"""
Identity bridge service.

Verifies ID tokens from an external OIDC provider, maps them onto a
game-backend account and optionally provisions a custodial EVM wallet
signed through a pluggable signing service.
"""
