"""
Ledger error taxonomy.

Every failure raised by the services aborts the whole operation: the session is
rolled back and nothing (stock, lines, events) from that call survives. Errors
carry a human message, an optional ``details`` dict with safe identifiers, and
the HTTP status the API layer maps them to.
"""


class LedgerError(Exception):
    """Base class for ledger and order-engine failures."""

    http_status = 400
    code = "LEDGER_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class AccessDeniedError(LedgerError):
    """Tenant argument does not match the authenticated actor."""

    http_status = 403
    code = "ACCESS_DENIED"


class NotFoundOrForbiddenError(LedgerError):
    """
    Entity does not exist for this tenant.

    Deliberately raised both for missing rows and rows owned by another tenant
    so callers cannot probe for existence across tenants.
    """

    http_status = 404
    code = "NOT_FOUND"


class BundleNotFoundError(NotFoundOrForbiddenError):
    code = "BUNDLE_NOT_FOUND"


class ValidationError(LedgerError):
    code = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    code = "INVALID_QUANTITY"


class InvalidDiscountError(ValidationError):
    code = "INVALID_DISCOUNT"


class InvalidAmountError(ValidationError):
    code = "INVALID_AMOUNT"


class InsufficientStockError(LedgerError):
    http_status = 409
    code = "INSUFFICIENT_STOCK"


class MissingBaseUnitError(LedgerError):
    http_status = 409
    code = "MISSING_BASE_UNIT"


class InvalidTransitionError(LedgerError):
    http_status = 409
    code = "INVALID_TRANSITION"


class AlreadyCancelledError(InvalidTransitionError):
    code = "ALREADY_CANCELLED"


class AlreadyCompletedError(InvalidTransitionError):
    code = "ALREADY_COMPLETED"


class EmptyBundleError(LedgerError):
    http_status = 409
    code = "EMPTY_BUNDLE"


class StockBusyError(LedgerError):
    """Bounded wait for a serialization lock expired."""

    http_status = 503
    code = "BUSY"


class LimitExceededError(LedgerError):
    http_status = 402
    code = "LIMIT_EXCEEDED"


class ImmutableRecordError(LedgerError):
    """Attempt to update or delete an append-only ledger row."""

    http_status = 500
    code = "IMMUTABLE_RECORD"
