# Overview: Pytest coverage for order creation, the order state machine and payments.

from decimal import Decimal

import pytest

from stockcore.errors import (
    AlreadyCancelledError,
    AlreadyCompletedError,
    InsufficientStockError,
    InvalidAmountError,
    InvalidDiscountError,
    InvalidQuantityError,
    InvalidTransitionError,
    NotFoundOrForbiddenError,
    ValidationError,
)
from stockcore.models import Customer, Event, FinancialTransaction, Order, OrderLine, StockMovement, StockReservation
from stockcore.services.inventory_service import adjust_stock, get_stock_balance
from stockcore.services.order_service import (
    OrderLineInput,
    cancel_order,
    complete_order,
    compute_line_financials,
    create_order,
    list_orders,
    refund_order,
)
from stockcore.services.payment_service import get_order_balance, log_payment
from stockcore.services.reservation_service import reserve_stock


@pytest.fixture
def stocked(db_session, actor_a, tenant_a, location_a, widget_a, gadget_a):
    """10 widgets and 5 gadgets on hand at location A."""
    widget, widget_piece, carton = widget_a
    gadget, gadget_piece = gadget_a
    adjust_stock(tenant_a.id, widget.id, location_a.id, widget_piece.id, 10, "purchase")
    adjust_stock(tenant_a.id, gadget.id, location_a.id, gadget_piece.id, 5, "purchase")
    return {
        "widget": widget,
        "widget_piece": widget_piece,
        "carton": carton,
        "gadget": gadget,
        "gadget_piece": gadget_piece,
    }


def _line(variant, unit, quantity, price="100", **extra):
    return {"variant_id": variant.id, "unit_id": unit.id, "quantity": quantity, "unit_price": price, **extra}


class TestLineFinancials:
    def test_discount_then_tax(self):
        fin = compute_line_financials(3, Decimal("100"), Decimal("50"), Decimal("0.14"))
        assert fin.net == Decimal("300.00")
        assert fin.discount == Decimal("50.00")
        assert fin.tax == Decimal("35.00")
        assert fin.total == Decimal("285.00")

    def test_keeps_sub_cent_precision(self):
        fin = compute_line_financials(3, Decimal("0.335"))
        assert fin.net == Decimal("1.005")
        assert fin.total == Decimal("1.005")

    def test_rounds_half_up_to_four_places(self):
        fin = compute_line_financials(1, Decimal("0.00125"))
        assert fin.net == Decimal("0.0013")

    def test_sub_cent_discount_above_exact_net(self):
        with pytest.raises(InvalidDiscountError):
            compute_line_financials(3, Decimal("0.335"), Decimal("1.006"))

    def test_discount_equal_to_exact_net(self):
        fin = compute_line_financials(3, Decimal("0.335"), Decimal("1.005"), Decimal("0.14"))
        assert fin.tax == Decimal("0")
        assert fin.total == Decimal("0")

    def test_discount_above_net(self):
        with pytest.raises(InvalidDiscountError):
            compute_line_financials(1, Decimal("10"), Decimal("10.01"))

    def test_negative_discount(self):
        with pytest.raises(InvalidDiscountError):
            compute_line_financials(1, Decimal("10"), Decimal("-1"))

    def test_negative_price(self):
        with pytest.raises(ValidationError):
            compute_line_financials(1, Decimal("-10"))


class TestCreateOrder:
    def test_deducts_stock_and_records_totals(self, db_session, tenant_a, location_a, customer_a, stocked):
        order = create_order(
            tenant_a.id,
            location_a.id,
            [
                _line(stocked["widget"], stocked["widget_piece"], 3, discount_amount="50", tax_rate="0.14"),
                _line(stocked["gadget"], stocked["gadget_piece"], 2, price="20"),
            ],
            customer_id=customer_a.id,
            metadata={"channel": "pos"},
        )

        assert order.status == "pending"
        assert order.net_amount == Decimal("340.00")
        assert order.discount_amount == Decimal("50.00")
        assert order.tax_amount == Decimal("35.00")
        assert order.total_amount == Decimal("325.00")
        assert order.order_metadata == {"channel": "pos"}
        assert len(order.lines) == 2

        assert get_stock_balance(tenant_a.id, stocked["widget"].id, location_a.id) == Decimal("7")
        assert get_stock_balance(tenant_a.id, stocked["gadget"].id, location_a.id) == Decimal("3")

        sales = StockMovement.query.filter_by(type_key="sale").all()
        assert len(sales) == 2
        assert all(m.reference_id == order.id for m in sales)
        assert all(m.reason == "Order Created" for m in sales)

        event = Event.query.filter_by(event_type="order.created").one()
        assert event.payload["order_id"] == order.id
        assert Decimal(event.payload["total"]) == Decimal("325.00")
        assert event.payload["line_count"] == 2

    def test_accepts_line_inputs(self, db_session, tenant_a, location_a, stocked):
        line = OrderLineInput(
            variant_id=stocked["widget"].id,
            unit_id=stocked["widget_piece"].id,
            quantity=Decimal("1"),
            unit_price=Decimal("9.99"),
        )
        order = create_order(tenant_a.id, location_a.id, [line])
        assert order.total_amount == Decimal("9.99")

    def test_sub_cent_prices_are_stored_exactly(self, db_session, tenant_a, location_a, stocked):
        order = create_order(
            tenant_a.id,
            location_a.id,
            [_line(stocked["widget"], stocked["widget_piece"], 3, price="0.335")],
        )

        line = OrderLine.query.filter_by(order_id=order.id).one()
        assert Decimal(line.unit_price) == Decimal("0.335")
        assert Decimal(line.net_amount) == Decimal("1.005")
        assert Decimal(line.net_amount) == Decimal(line.quantity) * Decimal(line.unit_price)
        assert Decimal(order.total_amount) == Decimal("1.005")

    @pytest.mark.parametrize("bad_id", [1.9, True, "1e2"])
    def test_line_ids_must_be_integers(self, db_session, tenant_a, location_a, stocked, bad_id):
        line = _line(stocked["widget"], stocked["widget_piece"], 1)
        line["variant_id"] = bad_id
        with pytest.raises(ValidationError):
            create_order(tenant_a.id, location_a.id, [line])
        assert Order.query.count() == 0

    def test_line_ids_accept_numeric_strings(self):
        line = OrderLineInput.from_dict({"variant_id": "4", "unit_id": 7, "quantity": "1", "unit_price": "2"})
        assert (line.variant_id, line.unit_id) == (4, 7)

    def test_insufficient_second_line_rolls_back_everything(self, db_session, tenant_a, location_a, stocked):
        movements_before = StockMovement.query.count()
        events_before = Event.query.count()

        with pytest.raises(InsufficientStockError) as exc:
            create_order(
                tenant_a.id,
                location_a.id,
                [
                    _line(stocked["widget"], stocked["widget_piece"], 2),
                    _line(stocked["gadget"], stocked["gadget_piece"], 6),
                ],
            )

        assert exc.value.details["line"] == 1
        assert Order.query.count() == 0
        assert OrderLine.query.count() == 0
        assert StockMovement.query.count() == movements_before
        assert Event.query.count() == events_before
        assert get_stock_balance(tenant_a.id, stocked["widget"].id, location_a.id) == Decimal("10")

    def test_same_variant_on_two_lines(self, db_session, tenant_a, location_a, stocked):
        with pytest.raises(InsufficientStockError):
            create_order(
                tenant_a.id,
                location_a.id,
                [
                    _line(stocked["widget"], stocked["widget_piece"], 6),
                    _line(stocked["widget"], stocked["widget_piece"], 5),
                ],
            )
        assert Order.query.count() == 0

    def test_carton_line_converts_to_base(self, db_session, tenant_a, location_a, stocked):
        adjust_stock(tenant_a.id, stocked["widget"].id, location_a.id, stocked["widget_piece"].id, 2, "purchase")
        create_order(tenant_a.id, location_a.id, [_line(stocked["widget"], stocked["carton"], 1)])
        assert get_stock_balance(tenant_a.id, stocked["widget"].id, location_a.id) == Decimal("0")

    def test_zero_quantity(self, db_session, tenant_a, location_a, stocked):
        with pytest.raises(InvalidQuantityError):
            create_order(tenant_a.id, location_a.id, [_line(stocked["widget"], stocked["widget_piece"], 0)])

    def test_discount_above_net_rejected(self, db_session, tenant_a, location_a, stocked):
        with pytest.raises(InvalidDiscountError):
            create_order(
                tenant_a.id,
                location_a.id,
                [_line(stocked["widget"], stocked["widget_piece"], 1, price="10", discount_amount="11")],
            )
        assert Order.query.count() == 0

    def test_empty_lines(self, db_session, tenant_a, location_a, stocked):
        with pytest.raises(ValidationError):
            create_order(tenant_a.id, location_a.id, [])

    def test_malformed_line(self, db_session, tenant_a, location_a, stocked):
        with pytest.raises(ValidationError):
            create_order(tenant_a.id, location_a.id, [{"variant_id": stocked["widget"].id}])

    def test_metadata_must_be_object(self, db_session, tenant_a, location_a, stocked):
        with pytest.raises(ValidationError):
            create_order(
                tenant_a.id,
                location_a.id,
                [_line(stocked["widget"], stocked["widget_piece"], 1)],
                metadata=["not", "a", "dict"],
            )

    def test_foreign_customer(self, db_session, tenant_a, tenant_b, location_a, stocked):
        foreign = Customer(tenant_id=tenant_b.id, name="Other")
        db_session.add(foreign)
        db_session.commit()
        with pytest.raises(NotFoundOrForbiddenError):
            create_order(
                tenant_a.id,
                location_a.id,
                [_line(stocked["widget"], stocked["widget_piece"], 1)],
                customer_id=foreign.id,
            )


class TestReservationConversion:
    def test_converts_own_reservation(self, db_session, tenant_a, location_a, stocked):
        reservation = reserve_stock(
            tenant_a.id, stocked["widget"].id, location_a.id, stocked["widget_piece"].id, 10, order_ref="cart-1"
        )
        reservation_id = reservation.id

        order = create_order(
            tenant_a.id,
            location_a.id,
            [_line(stocked["widget"], stocked["widget_piece"], 10)],
            reservation_ids=[reservation_id],
        )

        assert order.status == "pending"
        assert db_session.get(StockReservation, reservation_id) is None
        assert get_stock_balance(tenant_a.id, stocked["widget"].id, location_a.id) == Decimal("0")

    def test_reserved_stock_blocks_plain_order(self, db_session, tenant_a, location_a, stocked):
        reserve_stock(tenant_a.id, stocked["widget"].id, location_a.id, stocked["widget_piece"].id, 10)
        with pytest.raises(InsufficientStockError):
            create_order(tenant_a.id, location_a.id, [_line(stocked["widget"], stocked["widget_piece"], 1)])

    def test_reservation_at_other_location(self, db_session, tenant_a, location_a, location_a2, stocked):
        adjust_stock(tenant_a.id, stocked["widget"].id, location_a2.id, stocked["widget_piece"].id, 3, "purchase")
        elsewhere = reserve_stock(
            tenant_a.id, stocked["widget"].id, location_a2.id, stocked["widget_piece"].id, 3
        )
        with pytest.raises(ValidationError):
            create_order(
                tenant_a.id,
                location_a.id,
                [_line(stocked["widget"], stocked["widget_piece"], 1)],
                reservation_ids=[elsewhere.id],
            )
        assert db_session.get(StockReservation, elsewhere.id) is not None

    def test_reservation_for_unrelated_variant(self, db_session, tenant_a, location_a, stocked):
        held = reserve_stock(tenant_a.id, stocked["gadget"].id, location_a.id, stocked["gadget_piece"].id, 1)
        with pytest.raises(ValidationError):
            create_order(
                tenant_a.id,
                location_a.id,
                [_line(stocked["widget"], stocked["widget_piece"], 1)],
                reservation_ids=[held.id],
            )

    def test_unknown_reservation(self, db_session, tenant_a, location_a, stocked):
        with pytest.raises(NotFoundOrForbiddenError):
            create_order(
                tenant_a.id,
                location_a.id,
                [_line(stocked["widget"], stocked["widget_piece"], 1)],
                reservation_ids=[424242],
            )


class TestOrderTransitions:
    @pytest.fixture
    def order(self, db_session, tenant_a, location_a, stocked):
        return create_order(
            tenant_a.id,
            location_a.id,
            [
                _line(stocked["widget"], stocked["carton"], Decimal("0.5")),
                _line(stocked["gadget"], stocked["gadget_piece"], 2, price="20"),
            ],
        )

    def test_cancel_restores_stock(self, db_session, tenant_a, location_a, stocked, order):
        widget_before_order = Decimal("10")
        cancelled = cancel_order(tenant_a.id, order.id, reason="Customer changed mind")

        assert cancelled.status == "cancelled"
        assert cancelled.status_reason == "Customer changed mind"
        assert get_stock_balance(tenant_a.id, stocked["widget"].id, location_a.id) == widget_before_order
        assert get_stock_balance(tenant_a.id, stocked["gadget"].id, location_a.id) == Decimal("5")

        returns = StockMovement.query.filter_by(type_key="return", reference_id=order.id).all()
        assert len(returns) == 2
        assert Event.query.filter_by(event_type="order.cancelled").count() == 1

    def test_cancel_twice(self, db_session, tenant_a, order):
        cancel_order(tenant_a.id, order.id)
        with pytest.raises(AlreadyCancelledError):
            cancel_order(tenant_a.id, order.id)

    def test_complete(self, db_session, tenant_a, order):
        completed = complete_order(tenant_a.id, order.id)
        assert completed.status == "completed"
        event = Event.query.filter_by(event_type="order.completed").one()
        assert Decimal(event.payload["total"]) == Decimal(str(order.total_amount))

    def test_complete_twice(self, db_session, tenant_a, order):
        complete_order(tenant_a.id, order.id)
        with pytest.raises(AlreadyCompletedError):
            complete_order(tenant_a.id, order.id)

    def test_cancel_completed_order(self, db_session, tenant_a, order):
        complete_order(tenant_a.id, order.id)
        with pytest.raises(InvalidTransitionError):
            cancel_order(tenant_a.id, order.id)

    def test_complete_cancelled_order(self, db_session, tenant_a, order):
        cancel_order(tenant_a.id, order.id)
        with pytest.raises(InvalidTransitionError):
            complete_order(tenant_a.id, order.id)

    def test_refund_pending_order(self, db_session, tenant_a, order):
        with pytest.raises(InvalidTransitionError):
            refund_order(tenant_a.id, order.id)

    def test_refund_completed_order(self, db_session, tenant_a, location_a, stocked, order):
        complete_order(tenant_a.id, order.id)
        txn = refund_order(tenant_a.id, order.id)

        assert txn.type_key == "refund"
        assert txn.payment_method == "refund"
        assert txn.amount == Decimal(str(order.total_amount))
        assert txn.note == "Customer refund"

        refunded = db_session.get(Order, order.id)
        assert refunded.status == "refunded"
        assert get_stock_balance(tenant_a.id, stocked["widget"].id, location_a.id) == Decimal("10")

        event = Event.query.filter_by(event_type="order.refunded").one()
        assert event.payload["transaction_id"] == txn.id

        with pytest.raises(InvalidTransitionError):
            refund_order(tenant_a.id, order.id)

    def test_unknown_order(self, db_session, tenant_a, stocked):
        with pytest.raises(NotFoundOrForbiddenError):
            cancel_order(tenant_a.id, 999999)

    def test_list_orders_by_status(self, db_session, tenant_a, location_a, stocked, order):
        second = create_order(tenant_a.id, location_a.id, [_line(stocked["widget"], stocked["widget_piece"], 1)])
        complete_order(tenant_a.id, second.id)

        assert [o.id for o in list_orders(tenant_a.id)] == [second.id, order.id]
        assert [o.id for o in list_orders(tenant_a.id, status="completed")] == [second.id]


class TestPayments:
    @pytest.fixture
    def order(self, db_session, tenant_a, location_a, stocked):
        return create_order(tenant_a.id, location_a.id, [_line(stocked["widget"], stocked["widget_piece"], 2)])

    def test_split_payment(self, db_session, tenant_a, order):
        log_payment(tenant_a.id, order.id, "150", "cash")
        log_payment(tenant_a.id, order.id, Decimal("20.50"), "card")

        balance = get_order_balance(tenant_a.id, order.id)
        assert balance["total"] == Decimal("200.00")
        assert balance["paid"] == Decimal("170.50")
        assert balance["remaining"] == Decimal("29.50")
        assert Event.query.filter_by(event_type="payment.completed").count() == 2

    def test_payment_does_not_change_status(self, db_session, tenant_a, order):
        log_payment(tenant_a.id, order.id, "200", "wallet")
        assert db_session.get(Order, order.id).status == "pending"

    def test_invalid_method(self, db_session, tenant_a, order):
        with pytest.raises(ValidationError):
            log_payment(tenant_a.id, order.id, "10", "barter")
        assert FinancialTransaction.query.count() == 0

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_non_positive_amount(self, db_session, tenant_a, order, amount):
        with pytest.raises(InvalidAmountError):
            log_payment(tenant_a.id, order.id, amount, "cash")

    def test_unknown_order(self, db_session, tenant_a, stocked):
        with pytest.raises(NotFoundOrForbiddenError):
            log_payment(tenant_a.id, 999999, "10", "cash")
