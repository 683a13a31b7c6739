from typing import Any, Optional


class StorefrontError(Exception):
    """Base error; rendered as ``{"error": true, "message": ...}``."""

    status_code = 500
    default_message = "internal server error"

    def __init__(self, message: Optional[str] = None, content: Any = None):
        self.message = message or self.default_message
        self.content = content
        super().__init__(self.message)


class BadRequest(StorefrontError):
    status_code = 400
    default_message = "bad request"


class Unauthorized(StorefrontError):
    status_code = 401
    default_message = "invalid authentication credentials"

    def __init__(self):
        # The reason for rejecting a credential is never disclosed
        super().__init__(self.default_message)


class NotFound(StorefrontError):
    status_code = 404
    default_message = "not found"


class GatewayError(StorefrontError):
    """The payment gateway refused or failed a request."""

    status_code = 400
    default_message = "the payment provider could not process the request"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


class PaymentDeclined(GatewayError):
    default_message = "Your card was declined"


class GatewayUnavailable(GatewayError):
    """Stripe could not be reached or rejected our own credentials."""

    status_code = 502
    default_message = "the payment provider is unavailable, please try again later"


class ReconciliationNeeded(StorefrontError):
    """
    The gateway already acted (money moved, subscription created) but the
    local records could not be written. Never merged with ordinary failures.
    """

    status_code = 500
    default_message = "the payment was processed, but the database could not be updated"


class PersistenceError(StorefrontError):
    status_code = 500
    default_message = "the request could not be saved"


class InvoiceRenderError(StorefrontError):
    status_code = 500
    default_message = "the invoice could not be generated"


class MailDeliveryError(StorefrontError):
    status_code = 500
    default_message = "the email could not be sent"
