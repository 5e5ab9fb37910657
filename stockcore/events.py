"""
Typed event payloads.

Each known event kind has a frozen dataclass describing its payload shape.
event_service serializes them to JSON (Decimals as strings so no precision is
lost on the way to the event sink). Free-form dict payloads are reserved for
open-ended custom events.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal
from typing import ClassVar

STOCK_ADJUSTED = "stock.adjusted"
STOCK_RESERVED = "stock.reserved"
STOCK_RELEASED = "stock.released"
ORDER_CREATED = "order.created"
ORDER_CANCELLED = "order.cancelled"
ORDER_COMPLETED = "order.completed"
ORDER_REFUNDED = "order.refunded"
PAYMENT_COMPLETED = "payment.completed"
BUNDLE_SOLD = "bundle.sold"


def _json_value(value):
    if isinstance(value, Decimal):
        return str(value)
    return value


@dataclass(frozen=True)
class EventPayload:
    event_type: ClassVar[str] = ""

    def to_payload(self) -> dict:
        return {f.name: _json_value(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class StockAdjustedPayload(EventPayload):
    event_type: ClassVar[str] = STOCK_ADJUSTED

    variant_id: int
    location_id: int
    unit_id: int
    change: Decimal
    balance_before: Decimal
    new_balance: Decimal
    type: str
    movement_id: int
    reference_id: int | None = None


@dataclass(frozen=True)
class StockReservedPayload(EventPayload):
    event_type: ClassVar[str] = STOCK_RESERVED

    reservation_id: int
    variant_id: int
    location_id: int
    quantity_base: Decimal
    available_before: Decimal
    available_after: Decimal
    order_ref: str | None = None


@dataclass(frozen=True)
class StockReleasedPayload(EventPayload):
    event_type: ClassVar[str] = STOCK_RELEASED

    reservation_id: int
    variant_id: int
    location_id: int


@dataclass(frozen=True)
class OrderCreatedPayload(EventPayload):
    event_type: ClassVar[str] = ORDER_CREATED

    order_id: int
    net: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    line_count: int


@dataclass(frozen=True)
class OrderCancelledPayload(EventPayload):
    event_type: ClassVar[str] = ORDER_CANCELLED

    order_id: int
    reason: str | None


@dataclass(frozen=True)
class OrderCompletedPayload(EventPayload):
    event_type: ClassVar[str] = ORDER_COMPLETED

    order_id: int
    total: Decimal


@dataclass(frozen=True)
class OrderRefundedPayload(EventPayload):
    event_type: ClassVar[str] = ORDER_REFUNDED

    order_id: int
    refund_amount: Decimal
    transaction_id: int
    reason: str | None


@dataclass(frozen=True)
class PaymentCompletedPayload(EventPayload):
    event_type: ClassVar[str] = PAYMENT_COMPLETED

    order_id: int
    amount: Decimal
    method: str
    transaction_id: int


@dataclass(frozen=True)
class BundleSoldPayload(EventPayload):
    event_type: ClassVar[str] = BUNDLE_SOLD

    parent_variant_id: int
    location_id: int
    quantity: Decimal
    order_id: int | None
    components: int


KNOWN_EVENT_TYPES = frozenset(
    cls.event_type
    for cls in (
        StockAdjustedPayload,
        StockReservedPayload,
        StockReleasedPayload,
        OrderCreatedPayload,
        OrderCancelledPayload,
        OrderCompletedPayload,
        OrderRefundedPayload,
        PaymentCompletedPayload,
        BundleSoldPayload,
    )
)
