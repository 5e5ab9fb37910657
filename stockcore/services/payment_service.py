# Overview: Payment recording against orders; immutable financial transactions.

"""
Payment Recording Service

WHY: Orders are paid through one or more payments recorded as immutable
FinancialTransaction rows. Recording a payment never changes order status;
completing an order is a separate, explicit transition.

DESIGN PRINCIPLES:
- Payments are separate from orders (many-to-one relationship)
- Split and partial payments are allowed
- Immutable ledger: mistakes are corrected with a compensating refund, never an edit
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..errors import InvalidAmountError, ValidationError
from ..events import PaymentCompletedPayload
from ..models import FinancialTransaction
from .concurrency import run_with_retry
from .event_service import _record_event
from .order_service import quantize_money
from .tenant_service import assert_tenant_ownership, require_order
from .unit_service import to_decimal


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_WALLET = "wallet"
METHOD_CREDIT = "credit"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_BANK_TRANSFER,
    METHOD_WALLET,
    METHOD_CREDIT,
]

TRANSACTION_PAYMENT = "payment"
TRANSACTION_REFUND = "refund"


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def log_payment(tenant_id: int, order_id: int, amount, method: str) -> FinancialTransaction:
    """Record a successful payment for an order and emit payment.completed."""
    actor = assert_tenant_ownership(tenant_id)

    value = to_decimal(amount, "amount")
    if value <= 0:
        raise InvalidAmountError("amount must be positive", details={"amount": str(value)})
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            "Invalid payment method",
            details={"method": method, "allowed": VALID_PAYMENT_METHODS},
        )

    require_order(tenant_id, order_id)

    def _op():
        txn = FinancialTransaction(
            tenant_id=tenant_id,
            order_id=order_id,
            type_key=TRANSACTION_PAYMENT,
            amount=quantize_money(value),
            payment_method=method,
            status="success",
            actor_id=actor.actor_id,
        )
        db.session.add(txn)
        db.session.flush()

        _record_event(
            tenant_id,
            PaymentCompletedPayload.event_type,
            PaymentCompletedPayload(
                order_id=order_id,
                amount=quantize_money(value),
                method=method,
                transaction_id=txn.id,
            ),
            actor_id=actor.actor_id,
        )
        db.session.commit()
        return txn

    return run_with_retry(_op)


def list_transactions(tenant_id: int, order_id: int) -> list[FinancialTransaction]:
    assert_tenant_ownership(tenant_id)
    require_order(tenant_id, order_id)
    return (
        db.session.query(FinancialTransaction)
        .filter_by(tenant_id=tenant_id, order_id=order_id)
        .order_by(FinancialTransaction.id.asc())
        .all()
    )


def get_order_balance(tenant_id: int, order_id: int) -> dict:
    """Paid, refunded and outstanding amounts for an order."""
    assert_tenant_ownership(tenant_id)
    order = require_order(tenant_id, order_id)
    paid = refunded = Decimal("0")
    for txn in list_transactions(tenant_id, order_id):
        if txn.status != "success":
            continue
        if txn.type_key == TRANSACTION_PAYMENT:
            paid += to_decimal(txn.amount)
        elif txn.type_key == TRANSACTION_REFUND:
            refunded += to_decimal(txn.amount)
    total = to_decimal(order.total_amount)
    return {
        "order_id": order_id,
        "total": total,
        "paid": paid,
        "refunded": refunded,
        "remaining": max(Decimal("0"), total - paid),
    }
