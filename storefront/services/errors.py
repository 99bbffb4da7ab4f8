"""Errors raised by the payment workflow.

Routers translate these into HTTP responses; services never build
``HTTPException`` themselves.
"""


class PaymentError(Exception):
    """Base class for payment workflow errors."""


class PaymentValidationError(PaymentError):
    """Missing or malformed request fields (phone, amount, order id)."""


class OrderNotFoundError(PaymentError):
    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class GatewayError(PaymentError):
    """Any failure talking to the payment provider."""

    def __init__(self, message: str, status_code: int | None = None, details: dict | None = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class GatewayInitiationError(GatewayError):
    pass


class GatewayStatusError(GatewayError):
    pass


class CallbackPayloadError(PaymentError):
    """Callback body is missing the fields needed to dispatch it."""


class ReconciliationWarning(UserWarning):
    """Paid amount differs from the order total. Logged, never raised."""

    def __init__(self, order_id: int, expected, received):
        self.order_id = order_id
        self.expected = expected
        self.received = received
        super().__init__(
            f"Amount mismatch for order {order_id}: expected={expected}, received={received}"
        )
