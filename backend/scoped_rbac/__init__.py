"""
Scoped RBAC: effective-permission resolution for workspace/company tenants.

This package contains:
- settings: configuration read from RBAC_* environment variables
- logging_config: shared logging setup and the audit logger
- models / repositories: catalogue, enablement, roles and user grants
- services: resolution engine, mutation gateway and admin services
- routes: FastAPI app factory and HTTP endpoints
"""
