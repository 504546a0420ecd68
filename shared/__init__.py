"""
Shared utilities for the identity bridge.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI host scaffolding (middleware, health, metrics)
- test_helpers: Mock identity provider for tests

Do not import from service packages into shared/.
"""
