"""
Shared utilities for the scoped ACL engine.

This package aggregates common building blocks consumed by the engine and
its web integration:

- config: Engine configuration via pydantic-settings
- logging: Structured logging with request/user correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses

Do not import from service_acl into shared/.
"""
