from __future__ import annotations

from ..extensions import db
from tillcore.money import money_str
from tillcore.time_utils import to_utc_z, utcnow


SHIFT_STATUS_OPEN = "OPEN"
SHIFT_STATUS_CLOSED = "CLOSED"

CASH_STATUS_BALANCED = "BALANCED"
CASH_STATUS_EXCESS = "EXCESS"
CASH_STATUS_SHORT = "SHORT"


class CashShift(db.Model):
    """
    One cashier's accountability window over one store's cash drawer.

    LIFECYCLE:
    - OPEN: cash payments link here
    - CLOSED: counted, reconciled, immutable

    The partial unique index allows at most one OPEN shift per (user, store);
    concurrent opens lose on the index instead of on a check-then-insert.
    """
    __tablename__ = "cash_shifts"
    __table_args__ = (
        db.Index(
            "uq_cash_shifts_one_open_per_user_store",
            "user_id",
            "store_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=SHIFT_STATUS_OPEN, index=True)

    opening_cash = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    closing_cash = db.Column(db.Numeric(14, 3), nullable=True)
    # opening + net cash taken during the shift, computed at close
    expected_cash = db.Column(db.Numeric(14, 3), nullable=True)
    difference = db.Column(db.Numeric(14, 3), nullable=True)  # closing - expected

    opening_notes = db.Column(db.Text, nullable=True)
    closing_notes = db.Column(db.Text, nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", foreign_keys=[user_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def cash_status(self) -> str | None:
        if self.difference is None:
            return None
        if self.difference == 0:
            return CASH_STATUS_BALANCED
        return CASH_STATUS_EXCESS if self.difference > 0 else CASH_STATUS_SHORT

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "company_id": self.company_id,
            "store_id": self.store_id,
            "status": self.status,
            "opening_cash": money_str(self.opening_cash),
            "closing_cash": money_str(self.closing_cash),
            "expected_cash": money_str(self.expected_cash),
            "difference": money_str(self.difference),
            "cash_status": self.cash_status,
            "opening_notes": self.opening_notes,
            "closing_notes": self.closing_notes,
            "closed_by_user_id": self.closed_by_user_id,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "version_id": self.version_id,
        }
