from __future__ import annotations

from ..extensions import db
from tillcore.money import money_str
from tillcore.time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Catalog product. Pricing lives on the variants; the tax rate (percent)
    is shared by all of them.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    tax_percent = db.Column(db.Numeric(6, 3), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "tax_percent": money_str(self.tax_percent),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class ProductVariant(db.Model):
    """
    Sellable unit (size/colour/pack) of a product.

    WHOLESALE orders use ``wholesale_price`` when it is set, otherwise the
    retail price.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("product_id", "sku", name="uq_variants_product_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)
    barcode = db.Column(db.String(64), nullable=True, index=True)

    retail_price = db.Column(db.Numeric(14, 3), nullable=False)
    wholesale_price = db.Column(db.Numeric(14, 3), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    def price_for(self, customer_type: str):
        if customer_type == "WHOLESALE" and self.wholesale_price is not None:
            return self.wholesale_price
        return self.retail_price

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "barcode": self.barcode,
            "retail_price": money_str(self.retail_price),
            "wholesale_price": money_str(self.wholesale_price),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Inventory(db.Model):
    """
    On-hand stock of one variant in one store.

    ``quantity`` never goes below zero through the adjustment path.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "store_id", name="uq_inventory_variant_store"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    variant = db.relationship("ProductVariant", backref=db.backref("inventory", lazy=True))
    store = db.relationship("Store")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low(self) -> bool:
        return self.quantity <= self.reorder_level

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "store_id": self.store_id,
            "quantity": self.quantity,
            "reorder_level": self.reorder_level,
            "is_low": self.is_low,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }
