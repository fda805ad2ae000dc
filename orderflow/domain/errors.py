# orderflow/domain/errors.py
"""
Business and storage errors raised by the services.

Every error carries a stable machine readable ``kind`` and the HTTP status
the api layer answers with.
"""


class OrderFlowError(Exception):
    kind = "error"
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(OrderFlowError):
    kind = "validation_error"
    status_code = 422
    default_message = "Invalid input"


class EmptyCartError(ValidationError):
    kind = "empty_cart"
    default_message = "Cart is empty"


class NotFoundError(OrderFlowError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class UnknownPaymentError(NotFoundError):
    kind = "unknown_payment"
    default_message = "Payment not found"


class ConflictError(OrderFlowError):
    kind = "conflict"
    status_code = 409
    default_message = "Conflict"


class InsufficientStockError(ConflictError):
    kind = "insufficient_stock"
    default_message = "Insufficient stock"


class ProductUnavailableError(ConflictError):
    kind = "product_unavailable"
    default_message = "Product is not available"


class InvalidTransitionError(ConflictError):
    kind = "invalid_transition"
    default_message = "Status transition is not allowed"


class ConflictingPaymentStateError(ConflictError):
    kind = "conflicting_payment_state"
    default_message = "Payment is already in a different final state"


class AmountMismatchError(ConflictError):
    kind = "amount_mismatch"
    default_message = "Amount does not match the payment"


class StaleQuoteError(ConflictError):
    kind = "stale_quote"
    default_message = "Cart or prices changed during checkout, retry the request"


class TransientStorageError(OrderFlowError):
    kind = "transient_storage"
    status_code = 503
    default_message = "Storage temporarily unavailable, retry the request"
