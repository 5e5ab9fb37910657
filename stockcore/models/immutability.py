"""
Append-only enforcement for ledger tables.

StockMovement, OrderLine, FinancialTransaction and Event rows are history:
the ORM refuses to flush an UPDATE or DELETE for them. Corrections are new,
compensating rows.
"""

from sqlalchemy import event

from stockcore.errors import ImmutableRecordError
from .inventory import StockMovement
from .sales import OrderLine, FinancialTransaction
from .events import Event

APPEND_ONLY_MODELS = (StockMovement, OrderLine, FinancialTransaction, Event)


def _reject_update(mapper, connection, target):
    raise ImmutableRecordError(
        f"{type(target).__name__} rows are append-only and cannot be updated",
        details={"id": target.id},
    )


def _reject_delete(mapper, connection, target):
    raise ImmutableRecordError(
        f"{type(target).__name__} rows are append-only and cannot be deleted",
        details={"id": target.id},
    )


for _model in APPEND_ONLY_MODELS:
    event.listen(_model, "before_update", _reject_update)
    event.listen(_model, "before_delete", _reject_delete)
