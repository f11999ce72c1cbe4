# Overview: Per-request wiring of the services around one database session.

"""
The services never reach for a global session or gateway; they are built
here from the request's ``db.session`` and the gateway the app factory put
in ``app.extensions``. One ServiceContext is cached on ``flask.g`` per
request.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app, g

from ..extensions import db
from .cash_shift_service import CashShiftService
from .inventory_service import InventoryService
from .order_service import OrderService
from .payment_service import PaymentService, PaymentSettings

GATEWAY_EXTENSION_KEY = "tap_gateway"


@dataclass
class ServiceContext:
    inventory: InventoryService
    shifts: CashShiftService
    orders: OrderService
    payments: PaymentService

    @classmethod
    def build(cls, session, gateway, settings: PaymentSettings) -> "ServiceContext":
        inventory = InventoryService(session)
        shifts = CashShiftService(session)
        return cls(
            inventory=inventory,
            shifts=shifts,
            orders=OrderService(session, inventory=inventory),
            payments=PaymentService(
                session,
                gateway,
                shifts=shifts,
                inventory=inventory,
                settings=settings,
            ),
        )


def services() -> ServiceContext:
    if "services" not in g:
        g.services = ServiceContext.build(
            db.session,
            current_app.extensions[GATEWAY_EXTENSION_KEY],
            PaymentSettings.from_config(current_app.config),
        )
    return g.services
