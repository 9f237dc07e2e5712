"""Domain errors raised by the RBAC stores, engine and mutation gateway.

Configuration errors (the catalogue or role store does not know what was
asked for) and invariant violations (a write would break a uniqueness or
scope rule) are deliberately separate from an ordinary denial, which is a
`Decision` with `allowed=False` and never an exception.
"""

from __future__ import annotations

from typing import Any


class RBACError(Exception):
    """Base error for all RBAC operations."""

    code = "rbac_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigurationError(RBACError):
    """The catalogue or role store does not contain the requested entry."""

    code = "configuration_error"


class UnknownPermission(ConfigurationError):
    code = "unknown_permission"


class UnknownRole(ConfigurationError):
    code = "unknown_role"


class UnknownModule(ConfigurationError):
    code = "unknown_module"


class UnknownResource(ConfigurationError):
    code = "unknown_resource"


class InvariantViolation(RBACError):
    """A mutation would violate a uniqueness or scope constraint."""

    code = "invariant_violation"


class ScopeViolation(InvariantViolation):
    """Workspace/company scope is missing, doubled or mismatched."""

    code = "scope_violation"


class DuplicateEntry(InvariantViolation):
    code = "duplicate_entry"


class CatalogueCycle(InvariantViolation):
    code = "catalogue_cycle"


class ImmutableRole(InvariantViolation):
    """System roles cannot be renamed or deleted."""

    code = "immutable_role"


def ensure_exclusive_scope(workspace_id: Any, company_id: Any, *, entity: str) -> None:
    """Exactly one of workspace/company must be set."""
    if workspace_id is None and company_id is None:
        raise ScopeViolation(
            f"{entity} must be scoped to a workspace or a company",
            entity=entity,
        )
    if workspace_id is not None and company_id is not None:
        raise ScopeViolation(
            f"{entity} cannot be scoped to both a workspace and a company",
            entity=entity,
        )


__all__ = [
    "CatalogueCycle",
    "ConfigurationError",
    "DuplicateEntry",
    "ImmutableRole",
    "InvariantViolation",
    "RBACError",
    "ScopeViolation",
    "UnknownModule",
    "UnknownPermission",
    "UnknownResource",
    "UnknownRole",
    "ensure_exclusive_scope",
]
