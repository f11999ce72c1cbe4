# Overview: Atomic allocation of human-readable order numbers.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..models import OrderSequence


def format_order_number(business_date: date, value: int) -> str:
    return f"ORD-{business_date:%Y%m%d}-{value:03d}"


def next_order_number(session, *, store_id: int, business_date: date) -> str:
    """
    Allocate the next ``ORD-YYYYMMDD-NNN`` for a store and day.

    The counter row is bumped with one UPDATE so concurrent callers serialize
    on it. The first order of the day inserts the row inside a savepoint; if
    another transaction won that insert, the unique constraint fires and we
    fall back to the UPDATE.
    """
    stmt = (
        update(OrderSequence)
        .where(
            OrderSequence.store_id == store_id,
            OrderSequence.business_date == business_date,
        )
        .values(last_value=OrderSequence.last_value + 1)
        .execution_options(synchronize_session=False)
    )

    if not session.execute(stmt).rowcount:
        try:
            with session.begin_nested():
                session.add(OrderSequence(store_id=store_id, business_date=business_date, last_value=1))
            return format_order_number(business_date, 1)
        except IntegrityError:
            if not session.execute(stmt).rowcount:
                raise

    value = (
        session.query(OrderSequence.last_value)
        .filter_by(store_id=store_id, business_date=business_date)
        .scalar()
    )
    return format_order_number(business_date, value)
