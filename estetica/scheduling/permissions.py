"""Role capability matrix."""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class Role(str, Enum):
    """Staff roles."""

    ADMIN = "ADMIN"
    MEDICO = "MEDICO"
    SECRETARIA = "SECRETARIA"
    VIEWER = "VIEWER"


class Resource(str, Enum):
    """Protected resources."""

    APPOINTMENTS = "appointments"
    MEDICAL_RECORDS = "medical_records"
    PRODUCTS = "products"
    REPORTS = "reports"


class Action(str, Enum):
    """Actions on a resource."""

    READ = "read"
    WRITE = "write"
    DELETE = "delete"


R, W, D = Action.READ, Action.WRITE, Action.DELETE

CAPABILITIES: dict[Role, dict[Resource, frozenset[Action]]] = {
    Role.ADMIN: {
        Resource.APPOINTMENTS: frozenset({R, W, D}),
        Resource.MEDICAL_RECORDS: frozenset({R, W, D}),
        Resource.PRODUCTS: frozenset({R, W, D}),
        Resource.REPORTS: frozenset({R}),
    },
    Role.MEDICO: {
        Resource.APPOINTMENTS: frozenset({R, W}),
        Resource.MEDICAL_RECORDS: frozenset({R, W}),
        Resource.PRODUCTS: frozenset({R}),
        Resource.REPORTS: frozenset({R}),
    },
    Role.SECRETARIA: {
        Resource.APPOINTMENTS: frozenset({R, W}),
        Resource.MEDICAL_RECORDS: frozenset({R}),
        Resource.PRODUCTS: frozenset({R, W}),
        Resource.REPORTS: frozenset({R}),
    },
    Role.VIEWER: {
        Resource.APPOINTMENTS: frozenset({R}),
        Resource.MEDICAL_RECORDS: frozenset({R}),
        Resource.PRODUCTS: frozenset({R}),
        Resource.REPORTS: frozenset({R}),
    },
}


def can(role: Role | str, resource: Resource | str, action: Action | str) -> bool:
    """Check whether a role may perform an action on a resource."""
    try:
        role, resource, action = Role(role), Resource(resource), Action(action)
    except ValueError:
        return False
    return action in CAPABILITIES[role].get(resource, frozenset())


@dataclass(frozen=True)
class Actor:
    """Authenticated staff member performing an operation."""

    id: UUID
    role: Role

    def can(self, resource: Resource, action: Action) -> bool:
        """Check a capability for this actor's role."""
        return can(self.role, resource, action)
