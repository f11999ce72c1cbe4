# Overview: Capability-based authorization package.
# Re-exports all public APIs.

from .categories import CapabilityCategory
from .definitions import (
    CAPABILITY_DEFINITIONS,
    SALES_CAPABILITIES,
    PAYMENT_CAPABILITIES,
    SHIFT_CAPABILITIES,
    INVENTORY_CAPABILITIES,
    REPORT_CAPABILITIES,
    CREATE_ORDER,
    PROCESS_PAYMENT,
    REFUND_PAYMENT,
    CREATE_RETURN,
    VOID_ORDER,
    MANAGE_SHIFTS,
    ADJUST_INVENTORY,
    VIEW_REPORTS,
)
from .roles import Actor, Role, ROLE_CAPABILITIES
from .helpers import (
    get_all_capability_codes,
    get_capabilities_by_category,
    get_capability_definition,
    validate_capability_code,
)

__all__ = [
    "CapabilityCategory",
    "CAPABILITY_DEFINITIONS",
    "SALES_CAPABILITIES",
    "PAYMENT_CAPABILITIES",
    "SHIFT_CAPABILITIES",
    "INVENTORY_CAPABILITIES",
    "REPORT_CAPABILITIES",
    "CREATE_ORDER",
    "PROCESS_PAYMENT",
    "REFUND_PAYMENT",
    "CREATE_RETURN",
    "VOID_ORDER",
    "MANAGE_SHIFTS",
    "ADJUST_INVENTORY",
    "VIEW_REPORTS",
    "Actor",
    "Role",
    "ROLE_CAPABILITIES",
    "get_all_capability_codes",
    "get_capabilities_by_category",
    "get_capability_definition",
    "validate_capability_code",
]
