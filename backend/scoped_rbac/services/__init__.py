from .catalogue_service import CatalogueService
from .enablement_service import EnablementService
from .permission_gateway_service import PermissionGatewayService
from .resolution_cache import ResolutionCache
from .resolution_service import Decision, DecisionReason, ResolutionEngine
from .role_service import RoleService

__all__ = [
    "CatalogueService",
    "Decision",
    "DecisionReason",
    "EnablementService",
    "PermissionGatewayService",
    "ResolutionCache",
    "ResolutionEngine",
    "RoleService",
]
