"""
Feature modules live under this package.

Each module owns its routes and service functions and reuses the platform
primitives (auth, RBAC, audit, storage, request-scoped backend client).
"""
