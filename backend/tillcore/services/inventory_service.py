# Overview: Service-layer operations for store stock; signed adjustments, sale deduction and reversal restock.

"""
Inventory Adjuster

WHY: Stock must follow money. A SALE deducts stock in the same transaction
that marks it PAID; a RETURN/VOID puts stock back when the reversal itself is
PAID. Direct adjustments may never drive stock below zero.

DESIGN:
- One Inventory row per (variant, store); variants without a row in a store
  are untracked there and are skipped by deduction/restoration.
- deduct_for_sale and restore_for_reversal run inside the caller's
  transaction and never commit.
"""

from __future__ import annotations

import logging

from ..errors import InsufficientStock, NotFound, ValidationFailed
from ..models import Inventory, Order, Product, ProductVariant
from ..models.orders import ORDER_TYPE_SALE
from ..permissions import ADJUST_INVENTORY, VIEW_REPORTS, Actor
from .access import ensure_visible, require_capability, scope_query
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


class InventoryService:
    def __init__(self, session):
        self.session = session

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def get_record(self, variant_id: int, store_id: int, *, lock: bool = False) -> Inventory | None:
        query = self.session.query(Inventory).filter_by(variant_id=variant_id, store_id=store_id)
        if lock:
            query = lock_for_update(query)
        return query.first()

    def available(self, variant_id: int, store_id: int) -> int:
        record = self.get_record(variant_id, store_id)
        return record.quantity if record else 0

    def low_stock(self, actor: Actor, store_id: int | None = None) -> list[Inventory]:
        """Records at or below their reorder level, inside the actor's scope."""
        require_capability(actor, VIEW_REPORTS)
        query = (
            self.session.query(Inventory)
            .join(ProductVariant, Inventory.variant_id == ProductVariant.id)
            .join(Product, ProductVariant.product_id == Product.id)
            .filter(Inventory.quantity <= Inventory.reorder_level)
        )
        query = scope_query(query, actor, company_col=Product.company_id, store_col=Inventory.store_id)
        if store_id is not None:
            query = query.filter(Inventory.store_id == store_id)
        return query.order_by(Inventory.quantity.asc(), Inventory.id.asc()).all()

    # =========================================================================
    # DIRECT ADJUSTMENT
    # =========================================================================

    def adjust(self, inventory_id: int, delta: int, actor: Actor, reason: str | None = None) -> Inventory:
        """Apply a signed correction. Results below zero fail with InsufficientStock."""
        require_capability(actor, ADJUST_INVENTORY)
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise ValidationFailed("delta must be a non-zero integer", details={"delta": "must be a non-zero integer"})

        def _op() -> Inventory:
            record = lock_for_update(self.session.query(Inventory).filter_by(id=inventory_id)).first()
            if not record:
                raise NotFound("Inventory record not found")
            ensure_visible(
                actor,
                company_id=record.variant.product.company_id,
                store_id=record.store_id,
                label="Inventory record",
            )
            new_quantity = record.quantity + delta
            if new_quantity < 0:
                raise InsufficientStock(
                    f"Adjustment would leave {new_quantity} on hand",
                    details={"available": record.quantity, "delta": delta},
                )
            record.quantity = new_quantity
            logger.info(
                "Inventory %s adjusted by %+d to %d by user %s (%s)",
                record.id, delta, new_quantity, actor.user_id, reason or "no reason",
            )
            return record

        return run_with_retry(self.session, _op)

    # =========================================================================
    # SETTLEMENT HOOKS (caller owns the transaction)
    # =========================================================================

    def deduct_for_sale(self, order: Order) -> None:
        """
        Remove sold stock once a SALE is PAID.

        The customer has already paid, so a shortfall clamps at zero and is
        logged instead of failing the settlement.
        """
        if order.type != ORDER_TYPE_SALE:
            return
        for item in order.items:
            record = self.get_record(item.variant_id, order.store_id, lock=True)
            if record is None:
                logger.info("Variant %s untracked in store %s; skipping deduction", item.variant_id, order.store_id)
                continue
            if record.quantity < item.quantity:
                logger.warning(
                    "Stock shortfall on order %s: variant %s has %d, sold %d; clamping to zero",
                    order.order_number, item.variant_id, record.quantity, item.quantity,
                )
                record.quantity = 0
            else:
                record.quantity -= item.quantity
        logger.info("Inventory deducted for order %s", order.order_number)

    def restore_for_reversal(self, order: Order) -> None:
        """Put back the stock a RETURN/VOID reverses (its quantities are negative)."""
        if not order.is_reversal:
            return
        for item in order.items:
            restored = -item.quantity
            if restored <= 0:
                continue
            record = self.get_record(item.variant_id, order.store_id, lock=True)
            if record is None:
                logger.info("Variant %s untracked in store %s; skipping restock", item.variant_id, order.store_id)
                continue
            record.quantity += restored
        logger.info("Inventory restored for %s order %s", order.type, order.order_number)
