# Overview: Structured filter types for list operations and the page they return.

"""
List filters

Each list operation takes an explicit dataclass naming every supported
field. ``from_args`` parses a query-string mapping (Flask's
``request.args``) into it and raises ValidationFailed on bad values.
Role scope is applied by the service on top of whatever the caller asked for.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from ..errors import ValidationFailed
from ..models.orders import CUSTOMER_TYPES, ORDER_STATUSES, ORDER_TYPES
from ..models.payments import PAYMENT_METHODS, PAYMENT_PROVIDERS, PAYMENT_STATUSES
from ..models.shifts import SHIFT_STATUS_CLOSED, SHIFT_STATUS_OPEN
from ..time_utils import parse_iso_datetime
from ..validation import parse_choice

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def int_arg(args: Mapping[str, Any], name: str) -> int | None:
    raw = args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{name} must be an integer", details={name: "must be an integer"})


def choice_arg(args: Mapping[str, Any], name: str, choices) -> str | None:
    raw = args.get(name)
    if raw in (None, ""):
        return None
    return parse_choice(raw, name, choices)


def date_arg(args: Mapping[str, Any], name: str) -> datetime | None:
    raw = args.get(name)
    if raw in (None, ""):
        return None
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationFailed(f"{name} must be an ISO-8601 datetime", details={name: "invalid datetime"})


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = DEFAULT_LIMIT

    def __post_init__(self):
        if self.page < 1:
            raise ValidationFailed("page must be >= 1", details={"page": "must be >= 1"})
        if not 1 <= self.limit <= MAX_LIMIT:
            raise ValidationFailed(
                f"limit must be between 1 and {MAX_LIMIT}",
                details={"limit": f"must be between 1 and {MAX_LIMIT}"},
            )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "PageRequest":
        page = int_arg(args, "page")
        limit = int_arg(args, "limit")
        return cls(page=page if page is not None else 1, limit=limit if limit is not None else DEFAULT_LIMIT)


@dataclass
class Page:
    items: list
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    def to_dict(self, serialize=lambda obj: obj.to_dict()) -> dict:
        return {
            "items": [serialize(obj) for obj in self.items],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "total_pages": self.total_pages,
        }


def paginate(query, paging: PageRequest) -> Page:
    total = query.order_by(None).count()
    items = query.offset(paging.offset).limit(paging.limit).all()
    return Page(items=items, total=total, page=paging.page, limit=paging.limit)


@dataclass(frozen=True)
class OrderFilter:
    status: str | None = None
    type: str | None = None
    customer_type: str | None = None
    customer_id: int | None = None
    cashier_id: int | None = None
    store_id: int | None = None
    shift_id: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    paging: PageRequest = field(default_factory=PageRequest)

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "OrderFilter":
        return cls(
            status=choice_arg(args, "status", ORDER_STATUSES),
            type=choice_arg(args, "type", ORDER_TYPES),
            customer_type=choice_arg(args, "customer_type", CUSTOMER_TYPES),
            customer_id=int_arg(args, "customer_id"),
            cashier_id=int_arg(args, "cashier_id"),
            store_id=int_arg(args, "store_id"),
            shift_id=int_arg(args, "shift_id"),
            date_from=date_arg(args, "date_from"),
            date_to=date_arg(args, "date_to"),
            paging=PageRequest.from_args(args),
        )


@dataclass(frozen=True)
class PaymentFilter:
    order_id: int | None = None
    method: str | None = None
    status: str | None = None
    provider: str | None = None
    store_id: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    paging: PageRequest = field(default_factory=PageRequest)

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "PaymentFilter":
        return cls(
            order_id=int_arg(args, "order_id"),
            method=choice_arg(args, "method", PAYMENT_METHODS),
            status=choice_arg(args, "status", PAYMENT_STATUSES),
            provider=choice_arg(args, "provider", PAYMENT_PROVIDERS),
            store_id=int_arg(args, "store_id"),
            date_from=date_arg(args, "date_from"),
            date_to=date_arg(args, "date_to"),
            paging=PageRequest.from_args(args),
        )


@dataclass(frozen=True)
class ShiftFilter:
    status: str | None = None
    user_id: int | None = None
    store_id: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    paging: PageRequest = field(default_factory=PageRequest)

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "ShiftFilter":
        return cls(
            status=choice_arg(args, "status", (SHIFT_STATUS_OPEN, SHIFT_STATUS_CLOSED)),
            user_id=int_arg(args, "user_id"),
            store_id=int_arg(args, "store_id"),
            date_from=date_arg(args, "date_from"),
            date_to=date_arg(args, "date_to"),
            paging=PageRequest.from_args(args),
        )
