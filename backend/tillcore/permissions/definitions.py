# Overview: All capability definitions organized by category.
# Each capability is defined as: (code, name, description, category)

from .categories import CapabilityCategory


CREATE_ORDER = "CREATE_ORDER"
PROCESS_PAYMENT = "PROCESS_PAYMENT"
REFUND_PAYMENT = "REFUND_PAYMENT"
CREATE_RETURN = "CREATE_RETURN"
VOID_ORDER = "VOID_ORDER"
MANAGE_SHIFTS = "MANAGE_SHIFTS"
ADJUST_INVENTORY = "ADJUST_INVENTORY"
VIEW_REPORTS = "VIEW_REPORTS"


# -- SALES --

SALES_CAPABILITIES = [
    (
        CREATE_ORDER,
        "Create Orders",
        "Create draft orders, edit their lines, confirm and cancel them",
        CapabilityCategory.SALES,
    ),
    (
        CREATE_RETURN,
        "Create Returns",
        "Raise RETURN bills against paid sales",
        CapabilityCategory.SALES,
    ),
    (
        VOID_ORDER,
        "Void Orders",
        "Raise a full VOID bill against a paid sale made today",
        CapabilityCategory.SALES,
    ),
]

# -- PAYMENTS --

PAYMENT_CAPABILITIES = [
    (
        PROCESS_PAYMENT,
        "Process Payments",
        "Take cash, card and wallet payments against pending orders",
        CapabilityCategory.PAYMENTS,
    ),
    (
        REFUND_PAYMENT,
        "Refund Payments",
        "Refund a successful payment",
        CapabilityCategory.PAYMENTS,
    ),
]

# -- SHIFTS --

SHIFT_CAPABILITIES = [
    (
        MANAGE_SHIFTS,
        "Manage Shifts",
        "Close cash shifts opened by other users",
        CapabilityCategory.SHIFTS,
    ),
]

# -- INVENTORY --

INVENTORY_CAPABILITIES = [
    (
        ADJUST_INVENTORY,
        "Adjust Inventory",
        "Apply signed corrections to store stock",
        CapabilityCategory.INVENTORY,
    ),
]

# -- REPORTS --

REPORT_CAPABILITIES = [
    (
        VIEW_REPORTS,
        "View Reports",
        "View payment statistics and low-stock lists",
        CapabilityCategory.REPORTS,
    ),
]


CAPABILITY_DEFINITIONS = (
    SALES_CAPABILITIES
    + PAYMENT_CAPABILITIES
    + SHIFT_CAPABILITIES
    + INVENTORY_CAPABILITIES
    + REPORT_CAPABILITIES
)
