# Overview: Pytest coverage for the event stream and append-only ledger tables.

from decimal import Decimal

import pytest

from stockcore.errors import AccessDeniedError, ImmutableRecordError, ValidationError
from stockcore.events import StockReleasedPayload
from stockcore.models import Event, FinancialTransaction, OrderLine, StockMovement
from stockcore.services.event_service import emit, emit_event, list_events
from stockcore.services.inventory_service import adjust_stock
from stockcore.services.order_service import create_order
from stockcore.services.payment_service import log_payment
from tests.conftest import ACTOR_A_ID


@pytest.fixture
def ledger_rows(db_session, actor_a, tenant_a, location_a, widget_a):
    """One movement, one order line, one payment and their events."""
    variant, piece, _ = widget_a
    adjust_stock(tenant_a.id, variant.id, location_a.id, piece.id, 5, "purchase")
    order = create_order(
        tenant_a.id,
        location_a.id,
        [{"variant_id": variant.id, "unit_id": piece.id, "quantity": 1, "unit_price": "10"}],
    )
    log_payment(tenant_a.id, order.id, "10", "cash")
    return order


class TestAppendOnly:
    @pytest.mark.parametrize("model", [StockMovement, OrderLine, FinancialTransaction, Event])
    def test_update_rejected(self, db_session, ledger_rows, model):
        row = model.query.first()
        if model is StockMovement:
            row.reason = "edited"
        elif model is OrderLine:
            row.unit_price = Decimal("1")
        elif model is FinancialTransaction:
            row.amount = Decimal("1")
        else:
            row.payload = {"edited": True}

        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

    @pytest.mark.parametrize("model", [StockMovement, OrderLine, FinancialTransaction, Event])
    def test_delete_rejected(self, db_session, ledger_rows, model):
        row = model.query.first()
        db_session.delete(row)

        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()
        assert db_session.get(model, row.id) is not None


class TestEventStream:
    def test_custom_event_with_dict_payload(self, db_session, actor_a, tenant_a):
        event = emit_event(tenant_a.id, "loyalty.points_awarded", {"points": 15})
        db_session.commit()

        assert event.payload == {"points": 15}
        assert event.actor_id == ACTOR_A_ID

    def test_known_type_requires_typed_payload(self, db_session, actor_a, tenant_a):
        with pytest.raises(ValidationError):
            emit_event(tenant_a.id, "stock.adjusted", {"change": "1"})

    def test_payload_type_must_match(self, db_session, actor_a, tenant_a):
        payload = StockReleasedPayload(reservation_id=1, variant_id=2, location_id=3)
        with pytest.raises(ValidationError):
            emit_event(tenant_a.id, "stock.reserved", payload)

    def test_typed_emit(self, db_session, actor_a, tenant_a):
        event = emit(tenant_a.id, StockReleasedPayload(reservation_id=1, variant_id=2, location_id=3))
        db_session.commit()
        assert event.event_type == "stock.released"
        assert event.payload == {"reservation_id": 1, "variant_id": 2, "location_id": 3}

    def test_event_type_required(self, db_session, actor_a, tenant_a):
        with pytest.raises(ValidationError):
            emit_event(tenant_a.id, "", {})

    def test_list_newest_first_and_filtered(self, db_session, tenant_a, ledger_rows):
        events = list_events(tenant_a.id)
        assert [e.event_type for e in events] == ["payment.completed", "order.created", "stock.adjusted", "stock.adjusted"]

        only_orders = list_events(tenant_a.id, event_type="order.created")
        assert len(only_orders) == 1
        assert only_orders[0].payload["order_id"] == ledger_rows.id

        assert len(list_events(tenant_a.id, limit=1)) == 1

    def test_other_tenant_events_hidden(self, db_session, tenant_b, ledger_rows):
        with pytest.raises(AccessDeniedError):
            list_events(tenant_b.id)
