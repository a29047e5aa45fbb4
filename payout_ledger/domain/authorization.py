"""Admin roles and capabilities for payout actions"""

from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional

from payout_ledger.domain.exceptions import Forbidden


class Capability(str, Enum):
    VIEW_FINANCE = "view_finance"
    APPROVE_PAYOUTS = "approve_payouts"


class AdminRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    FINANCE = "finance"
    MODERATOR = "moderator"
    SUPPORT = "support"


ROLE_CAPABILITIES: Dict[AdminRole, FrozenSet[Capability]] = {
    AdminRole.SUPER_ADMIN: frozenset({Capability.VIEW_FINANCE, Capability.APPROVE_PAYOUTS}),
    AdminRole.ADMIN: frozenset({Capability.VIEW_FINANCE, Capability.APPROVE_PAYOUTS}),
    AdminRole.FINANCE: frozenset({Capability.VIEW_FINANCE, Capability.APPROVE_PAYOUTS}),
    AdminRole.MODERATOR: frozenset(),
    AdminRole.SUPPORT: frozenset(),
}


class AdminDirectory:
    """Resolves an admin id to its role; unknown ids have no capabilities"""

    def __init__(self, roles: Mapping[str, str]):
        self._roles: Dict[str, AdminRole] = {}
        for admin_id, role in roles.items():
            self._roles[admin_id] = AdminRole(role)

    def role_of(self, admin_id: str) -> Optional[AdminRole]:
        return self._roles.get(admin_id)

    def capabilities_of(self, admin_id: str) -> FrozenSet[Capability]:
        role = self.role_of(admin_id)
        if role is None:
            return frozenset()
        return ROLE_CAPABILITIES[role]

    def require(self, admin_id: Optional[str], capability: Capability) -> str:
        if not admin_id or not admin_id.strip():
            raise Forbidden("An authenticated administrator is required")
        if capability not in self.capabilities_of(admin_id):
            raise Forbidden(f"Administrator {admin_id} lacks the {capability.value} capability")
        return admin_id
