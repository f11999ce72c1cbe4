# Overview: Capability category constants for grouping related capabilities.


class CapabilityCategory:
    """Capability categories for organization and display."""
    SALES = "SALES"
    PAYMENTS = "PAYMENTS"
    SHIFTS = "SHIFTS"
    INVENTORY = "INVENTORY"
    REPORTS = "REPORTS"
