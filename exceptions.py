# exceptions.py


class OrderNotFound(Exception):
    """No row in the orders table for the requested id."""
    def __init__(self, order_id):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class ValidationError(Exception):
    """Request data is missing or malformed. Routes answer 400."""


class CarrierApiError(Exception):
    """
    Raised when a SendCloud call fails. Carries the HTTP status and the
    decoded error messages so routes and the run log can show them.
    """
    def __init__(
        self,
        message: str,
        *,
        api_status: int | None = None,
        api_messages: list | None = None,
        raw_response_text: str | None = None,
    ):
        super().__init__(message)
        self.api_status = api_status
        self.api_messages = api_messages or []
        self.raw_response_text = raw_response_text


class PaymentsApiError(Exception):
    """Stripe answered with an error or could not be reached."""
    def __init__(self, message: str, *, api_status: int | None = None):
        super().__init__(message)
        self.api_status = api_status


class WebhookSignatureError(Exception):
    """Stripe-Signature header missing, malformed, stale or not matching."""
