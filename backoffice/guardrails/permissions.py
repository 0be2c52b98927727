"""
Role-based feature gating.

This is a UI affordance that decides which screens and actions a role is
offered. It compares role labels only and is not a security control; real
authorization belongs to an external identity service.
"""
from enum import Enum
from typing import Dict, List, Optional
import logging

from pydantic import BaseModel

from backoffice.errors import AccessDeniedError
from backoffice.guardrails.audit_logger import EventSink, emit

logger = logging.getLogger(__name__)

class Role(str, Enum):
    VENDOR = "Vendor"
    ASSOCIATE = "Associate"
    MANAGER = "Manager"
    FINANCE = "Finance"
    OPERATIONS = "Operations"
    ADMIN = "Admin"

class AccessRule(BaseModel):
    roles: List[Role]
    module: str
    action: str

class AccessCheckResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    required_roles: List[Role] = []

def _rule(module: str, action: str, *roles: Role) -> AccessRule:
    return AccessRule(roles=list(roles), module=module, action=action)

# Permission -> allowed roles
ACCESS_RULES: Dict[str, AccessRule] = {
    # RMA
    "rma:create": _rule("rma", "create", Role.ASSOCIATE, Role.MANAGER),
    "rma:view": _rule("rma", "view", Role.ASSOCIATE, Role.MANAGER, Role.FINANCE, Role.ADMIN),
    "rma:disposition": _rule("rma", "disposition", Role.MANAGER, Role.FINANCE, Role.ADMIN),
    "rma:approve": _rule("rma", "approve", Role.MANAGER, Role.FINANCE, Role.ADMIN),
    "rma:finance_view": _rule("rma", "finance_view", Role.FINANCE, Role.ADMIN),
    "rma:vendor_portal": _rule("rma", "vendor_portal", Role.VENDOR),
    # Invoices
    "invoice:create": _rule("invoice", "create", Role.FINANCE, Role.ADMIN),
    "invoice:edit": _rule("invoice", "edit", Role.FINANCE, Role.ADMIN),
    "invoice:view": _rule("invoice", "view", Role.FINANCE, Role.ADMIN, Role.VENDOR),
    "invoice:export": _rule("invoice", "export", Role.FINANCE, Role.ADMIN, Role.VENDOR),
    # Payments / ledger
    "payment:record": _rule("payments", "record", Role.FINANCE, Role.ADMIN),
    "gl:post": _rule("finance", "post", Role.FINANCE, Role.ADMIN),
    # Warehouse
    "wms:receiving": _rule("wms", "receiving", Role.ASSOCIATE, Role.MANAGER, Role.OPERATIONS, Role.ADMIN),
    "wms:wave_control": _rule("wms", "wave_control", Role.MANAGER, Role.OPERATIONS, Role.ADMIN),
    "wms:picking": _rule("wms", "picking", Role.ASSOCIATE, Role.MANAGER, Role.OPERATIONS, Role.ADMIN),
    "wms:packout": _rule("wms", "packout", Role.ASSOCIATE, Role.MANAGER, Role.OPERATIONS, Role.ADMIN),
}

ROUTE_PERMISSIONS: Dict[str, str] = {
    "/rma-intake": "rma:create",
    "/rma-manager": "rma:disposition",
    "/rma-finance": "rma:finance_view",
    "/vendor-portal-rma": "rma:vendor_portal",
    "/invoices": "invoice:view",
    "/payments": "payment:record",
    "/receiving": "wms:receiving",
    "/wave-control": "wms:wave_control",
    "/picking": "wms:picking",
    "/packout": "wms:packout",
}

class PermissionChecker:
    def __init__(self, sink: Optional[EventSink] = None):
        self.sink = sink

    def check_access(self, role: str, permission: str, actor: str = "system") -> AccessCheckResult:
        """
        Basic role label check.
        """
        rule = ACCESS_RULES.get(permission)
        if not rule:
            logger.warning(f"Unknown permission {permission} requested by {actor}")
            emit(self.sink, "permission_not_found", {
                "module": "rbac", "actor": actor, "permission": permission, "role": str(role)
            })
            return AccessCheckResult(allowed=False, reason="Permission not found")

        # Map role label to Role Enum
        try:
            role_enum = Role(role)
        except ValueError:
            logger.warning(f"Unknown role {role} for {actor}")
            return AccessCheckResult(allowed=False, reason=f"Unknown role {role}", required_roles=rule.roles)

        allowed = role_enum in rule.roles
        if not allowed:
            logger.warning(f"{actor} ({role_enum.value}) denied permission {permission}")

        emit(self.sink, "access_granted" if allowed else "access_denied", {
            "module": "rbac",
            "actor": actor,
            "permission": permission,
            "role": role_enum.value,
            "allowed_roles": [r.value for r in rule.roles],
        })
        return AccessCheckResult(
            allowed=allowed,
            reason=None if allowed else f"Role {role_enum.value} not authorized",
            required_roles=rule.roles
        )

    def server_guard(self, role: str, permission: str, actor: str = "system") -> bool:
        result = self.check_access(role, permission, actor)
        if not result.allowed:
            raise AccessDeniedError(f"Access denied: {result.reason}")
        return True

    def can_access_route(self, role: str, route: str, actor: str = "client") -> bool:
        permission = ROUTE_PERMISSIONS.get(route)
        if not permission:
            return True # Unmapped routes are open
        return self.check_access(role, permission, actor).allowed

    def available_features(self, role: str) -> List[str]:
        try:
            role_enum = Role(role)
        except ValueError:
            return []
        return [name for name, rule in ACCESS_RULES.items() if role_enum in rule.roles]
