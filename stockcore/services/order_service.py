# Overview: Order commit engine; multi-line creation, financials and the order state machine.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..errors import (
    AlreadyCancelledError,
    AlreadyCompletedError,
    InsufficientStockError,
    InvalidDiscountError,
    InvalidQuantityError,
    InvalidTransitionError,
    NotFoundOrForbiddenError,
    ValidationError,
)
from ..events import (
    OrderCancelledPayload,
    OrderCompletedPayload,
    OrderCreatedPayload,
    OrderRefundedPayload,
)
from ..models import FinancialTransaction, Order, OrderLine, StockReservation
from ..models.sales import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_REFUNDED,
)
from ..validation import coerce_int
from .concurrency import keyed_lock, order_lock_key, run_with_retry, stock_lock_key
from .event_service import _record_event
from .inventory_service import MOVEMENT_RETURN, MOVEMENT_SALE, _adjust_stock_inner, _available_base
from .tenant_service import (
    assert_tenant_ownership,
    require_customer,
    require_location,
    require_order,
    require_unit_for_variant,
    require_variant,
)
from .unit_service import convert_to_base, find_base_unit, to_decimal

MONEY_SCALE = Decimal("0.0001")
ZERO = Decimal("0")

REFUND_METHOD = "refund"
DEFAULT_REFUND_REASON = "Customer refund"


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_SCALE, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class OrderLineInput:
    variant_id: int
    unit_id: int
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal = ZERO
    discount_amount: Decimal = ZERO

    @classmethod
    def from_dict(cls, data: dict) -> "OrderLineInput":
        if not isinstance(data, dict):
            raise ValidationError("Invalid order line", details={"line": str(data)})
        variant_id = coerce_int(data.get("variant_id"), "variant_id")
        unit_id = coerce_int(data.get("unit_id"), "unit_id")
        if variant_id is None or unit_id is None:
            raise ValidationError("Order line requires variant_id and unit_id", details={"line": str(data)})
        try:
            return cls(
                variant_id=variant_id,
                unit_id=unit_id,
                quantity=data["quantity"],
                unit_price=data["unit_price"],
                tax_rate=data.get("tax_rate", ZERO),
                discount_amount=data.get("discount_amount", ZERO),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError("Invalid order line", details={"line": str(data)}) from exc


@dataclass(frozen=True)
class LineFinancials:
    net: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal


def compute_line_financials(quantity, unit_price, discount_amount=ZERO, tax_rate=ZERO) -> LineFinancials:
    """
    net      = quantity * unit_price
    tax_base = max(0, net - discount)
    tax      = tax_base * tax_rate
    total    = net - discount + tax

    The discount is checked against the exact net. Stored amounts are then
    rounded half-up to four decimal places. Example: 3 x 100, discount 50,
    rate 0.14 -> net 300, tax 35, total 285.
    """
    qty = to_decimal(quantity)
    price = to_decimal(unit_price, "unit_price")
    discount = to_decimal(discount_amount, "discount_amount")
    rate = to_decimal(tax_rate, "tax_rate")

    if price < 0:
        raise ValidationError("unit_price cannot be negative", details={"unit_price": str(price)})
    if rate < 0:
        raise ValidationError("tax_rate cannot be negative", details={"tax_rate": str(rate)})
    if discount < 0:
        raise InvalidDiscountError("discount cannot be negative", details={"discount_amount": str(discount)})

    exact_net = qty * price
    if discount > exact_net:
        raise InvalidDiscountError(
            "discount exceeds line net amount",
            details={"discount_amount": str(discount), "net_amount": str(exact_net)},
        )
    net = quantize_money(exact_net)
    discount = quantize_money(discount)
    tax = quantize_money(max(ZERO, exact_net - discount) * rate)
    return LineFinancials(net=net, discount=discount, tax=tax, total=net - discount + tax)


@dataclass(frozen=True)
class _PreparedLine:
    index: int
    variant_id: int
    unit_id: int
    quantity: Decimal
    base_quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    financials: LineFinancials


def _prepare_lines(tenant_id: int, lines) -> list[_PreparedLine]:
    if not lines:
        raise ValidationError("Order must contain at least one line")

    prepared = []
    for index, raw in enumerate(lines):
        line = raw if isinstance(raw, OrderLineInput) else OrderLineInput.from_dict(raw)

        qty = to_decimal(line.quantity)
        if qty <= 0:
            raise InvalidQuantityError(
                "quantity must be positive", details={"line": index, "quantity": str(qty)}
            )

        require_variant(tenant_id, line.variant_id)
        unit = require_unit_for_variant(tenant_id, line.variant_id, line.unit_id)
        find_base_unit(tenant_id, line.variant_id)

        prepared.append(_PreparedLine(
            index=index,
            variant_id=line.variant_id,
            unit_id=line.unit_id,
            quantity=qty,
            base_quantity=convert_to_base(unit, qty),
            unit_price=quantize_money(to_decimal(line.unit_price, "unit_price")),
            tax_rate=to_decimal(line.tax_rate, "tax_rate"),
            financials=compute_line_financials(qty, line.unit_price, line.discount_amount, line.tax_rate),
        ))
    return prepared


def _load_converted_reservations(
    tenant_id: int,
    location_id: int,
    reservation_ids: list[int],
    variant_ids: set[int],
) -> dict[int, list[StockReservation]]:
    """
    Reservations being turned into this sale, grouped by variant.

    They must belong to the tenant, sit at the order's location and cover a
    variant the order actually sells.
    """
    if not reservation_ids:
        return {}

    rows = (
        db.session.query(StockReservation)
        .filter(StockReservation.tenant_id == tenant_id, StockReservation.id.in_(reservation_ids))
        .all()
    )
    found = {r.id for r in rows}
    missing = [rid for rid in reservation_ids if rid not in found]
    if missing:
        raise NotFoundOrForbiddenError("Reservation not found", details={"reservation_ids": missing})

    grouped: dict[int, list[StockReservation]] = {}
    for r in rows:
        if r.location_id != location_id:
            raise ValidationError(
                "Reservation is held at a different location",
                details={"reservation_id": r.id, "location_id": r.location_id},
            )
        if r.variant_id not in variant_ids:
            raise ValidationError(
                "Reservation does not match any order line",
                details={"reservation_id": r.id, "variant_id": r.variant_id},
            )
        grouped.setdefault(r.variant_id, []).append(r)
    return grouped


def create_order(
    tenant_id: int,
    location_id: int,
    lines,
    customer_id: int | None = None,
    metadata: dict | None = None,
    reservation_ids=None,
) -> Order:
    """
    Create a pending order, deduct its stock and record its totals atomically.

    Every (variant, location) lock the order needs is taken up front in
    sorted key order. Availability for each line excludes the reservations
    listed in `reservation_ids`, which are consumed by the first line selling
    their variant. Any failure rolls back the header, all lines, every stock
    movement and every event from this call.
    """
    actor = assert_tenant_ownership(tenant_id)

    require_location(tenant_id, location_id)
    if customer_id is not None:
        require_customer(tenant_id, customer_id)
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object")

    prepared = _prepare_lines(tenant_id, lines)
    variant_ids = {line.variant_id for line in prepared}
    reservation_ids = list(dict.fromkeys(int(rid) for rid in (reservation_ids or [])))
    keys = [stock_lock_key(variant_id, location_id) for variant_id in variant_ids]

    def _op():
        with keyed_lock(*keys):
            converted = _load_converted_reservations(tenant_id, location_id, reservation_ids, variant_ids)
            excluded = {vid: [r.id for r in rows] for vid, rows in converted.items()}

            order = Order(
                tenant_id=tenant_id,
                location_id=location_id,
                customer_id=customer_id,
                status=ORDER_STATUS_PENDING,
                net_amount=ZERO,
                tax_amount=ZERO,
                discount_amount=ZERO,
                total_amount=ZERO,
                order_metadata=metadata or {},
                actor_id=actor.actor_id,
            )
            db.session.add(order)
            db.session.flush()

            net_total = tax_total = discount_total = grand_total = ZERO

            for line in prepared:
                available = _available_base(
                    tenant_id,
                    line.variant_id,
                    location_id,
                    exclude_reservation_ids=excluded.get(line.variant_id, ()),
                )
                if available < line.base_quantity:
                    current_app.logger.info(
                        "Order rejected: variant=%s location=%s requested=%s available=%s",
                        line.variant_id, location_id, line.base_quantity, available,
                    )
                    raise InsufficientStockError(
                        "Insufficient stock",
                        details={
                            "line": line.index,
                            "variant_id": line.variant_id,
                            "location_id": location_id,
                            "requested": str(line.base_quantity),
                            "available": str(available),
                        },
                    )

                fin = line.financials
                db.session.add(OrderLine(
                    tenant_id=tenant_id,
                    order_id=order.id,
                    variant_id=line.variant_id,
                    unit_id=line.unit_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    discount_amount=fin.discount,
                    tax_rate=line.tax_rate,
                    tax_amount=fin.tax,
                    net_amount=fin.net,
                    total_price=fin.total,
                ))
                net_total += fin.net
                tax_total += fin.tax
                discount_total += fin.discount
                grand_total += fin.total

                _adjust_stock_inner(
                    tenant_id=tenant_id,
                    variant_id=line.variant_id,
                    location_id=location_id,
                    unit_id=line.unit_id,
                    quantity_delta=-line.quantity,
                    movement_type=MOVEMENT_SALE,
                    reason="Order Created",
                    reference_id=order.id,
                    actor_id=actor.actor_id,
                )

                for reservation in converted.pop(line.variant_id, []):
                    db.session.delete(reservation)

            order.net_amount = net_total
            order.tax_amount = tax_total
            order.discount_amount = discount_total
            order.total_amount = grand_total
            db.session.flush()

            _record_event(
                tenant_id,
                OrderCreatedPayload.event_type,
                OrderCreatedPayload(
                    order_id=order.id,
                    net=net_total,
                    tax=tax_total,
                    discount=discount_total,
                    total=grand_total,
                    line_count=len(prepared),
                ),
                actor_id=actor.actor_id,
            )
            db.session.commit()
            return order

    return run_with_retry(_op)


def get_order(tenant_id: int, order_id: int) -> Order:
    assert_tenant_ownership(tenant_id)
    return require_order(tenant_id, order_id)


def _transition_keys(order: Order) -> list[int]:
    # Lines are immutable, so the cell set read before locking stays valid
    keys = {order_lock_key(order.id)}
    keys.update(stock_lock_key(line.variant_id, order.location_id) for line in order.lines)
    return list(keys)


def _restore_stock(order: Order, reason: str, actor_id: int | None) -> Decimal:
    """Put every line back on hand (type return). Returns the sum of line totals."""
    refunded = ZERO
    for line in order.lines:
        _adjust_stock_inner(
            tenant_id=order.tenant_id,
            variant_id=line.variant_id,
            location_id=order.location_id,
            unit_id=line.unit_id,
            quantity_delta=to_decimal(line.quantity),
            movement_type=MOVEMENT_RETURN,
            reason=reason,
            reference_id=order.id,
            actor_id=actor_id,
        )
        refunded += to_decimal(line.total_price)
    return refunded


def cancel_order(tenant_id: int, order_id: int, reason: str | None = None) -> Order:
    """pending -> cancelled; restores every line's stock."""
    actor = assert_tenant_ownership(tenant_id)
    keys = _transition_keys(require_order(tenant_id, order_id))

    def _op():
        with keyed_lock(*keys):
            order = require_order(tenant_id, order_id, lock=True)
            if order.status == ORDER_STATUS_CANCELLED:
                raise AlreadyCancelledError("Order is already cancelled", details={"order_id": order_id})
            if order.status != ORDER_STATUS_PENDING:
                raise InvalidTransitionError(
                    f"Cannot cancel an order that is {order.status}",
                    details={"order_id": order_id, "status": order.status},
                )

            _restore_stock(order, reason or "Order Cancelled", actor.actor_id)
            order.status = ORDER_STATUS_CANCELLED
            order.status_reason = reason
            db.session.flush()

            _record_event(
                tenant_id,
                OrderCancelledPayload.event_type,
                OrderCancelledPayload(order_id=order.id, reason=reason),
                actor_id=actor.actor_id,
            )
            db.session.commit()
            return order

    return run_with_retry(_op)


def complete_order(tenant_id: int, order_id: int) -> Order:
    """pending -> completed. Payments are recorded separately."""
    actor = assert_tenant_ownership(tenant_id)
    require_order(tenant_id, order_id)

    def _op():
        with keyed_lock(order_lock_key(order_id)):
            order = require_order(tenant_id, order_id, lock=True)
            if order.status == ORDER_STATUS_COMPLETED:
                raise AlreadyCompletedError("Order is already completed", details={"order_id": order_id})
            if order.status != ORDER_STATUS_PENDING:
                raise InvalidTransitionError(
                    f"Cannot complete an order that is {order.status}",
                    details={"order_id": order_id, "status": order.status},
                )

            order.status = ORDER_STATUS_COMPLETED
            db.session.flush()

            _record_event(
                tenant_id,
                OrderCompletedPayload.event_type,
                OrderCompletedPayload(order_id=order.id, total=to_decimal(order.total_amount)),
                actor_id=actor.actor_id,
            )
            db.session.commit()
            return order

    return run_with_retry(_op)


def refund_order(tenant_id: int, order_id: int, reason: str | None = None) -> FinancialTransaction:
    """
    completed -> refunded.

    Restores stock for every line, records one refund FinancialTransaction for
    the sum of line totals, and emits order.refunded.
    """
    actor = assert_tenant_ownership(tenant_id)
    keys = _transition_keys(require_order(tenant_id, order_id))
    reason = reason or DEFAULT_REFUND_REASON

    def _op():
        with keyed_lock(*keys):
            order = require_order(tenant_id, order_id, lock=True)
            if order.status != ORDER_STATUS_COMPLETED:
                raise InvalidTransitionError(
                    "Only completed orders can be refunded",
                    details={"order_id": order_id, "status": order.status},
                )

            refund_amount = quantize_money(_restore_stock(order, reason, actor.actor_id))

            txn = FinancialTransaction(
                tenant_id=tenant_id,
                order_id=order.id,
                type_key="refund",
                amount=refund_amount,
                payment_method=REFUND_METHOD,
                status="success",
                note=reason,
                actor_id=actor.actor_id,
            )
            db.session.add(txn)
            order.status = ORDER_STATUS_REFUNDED
            order.status_reason = reason
            db.session.flush()

            _record_event(
                tenant_id,
                OrderRefundedPayload.event_type,
                OrderRefundedPayload(
                    order_id=order.id,
                    refund_amount=refund_amount,
                    transaction_id=txn.id,
                    reason=reason,
                ),
                actor_id=actor.actor_id,
            )
            db.session.commit()
            return txn

    return run_with_retry(_op)


def list_orders(tenant_id: int, status: str | None = None, limit: int = 100) -> list[Order]:
    assert_tenant_ownership(tenant_id)
    q = db.session.query(Order).filter(Order.tenant_id == tenant_id)
    if status:
        q = q.filter(Order.status == status)
    return q.order_by(Order.id.desc()).limit(max(1, min(int(limit), 500))).all()
