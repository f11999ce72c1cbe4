from __future__ import annotations

from ..extensions import db
from tillcore.time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """Company-scoped customer record. Orders copy name/phone at creation."""
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "created_at": to_utc_z(self.created_at),
        }
