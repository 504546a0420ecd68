"""
Identity bridge application package.

- app.jwks: key cache for the provider's signing keys.
- app.validation: ID token verification and claim extraction.
- app.identity: mapping verified tokens onto external identities.
- app.signing: signing service backends (derived, managed).
- app.wallet: idempotent wallet provisioning.
- app.transactions: EVM transaction building and signing.
- app.adapters: collaborator interfaces and in-memory implementations.
- app.rpc: backend RPC handlers.
- app.main: FastAPI host wiring the RPCs, health and metrics.

Module import must not perform network calls; all IO happens in handlers
or explicit startup hooks.
"""
