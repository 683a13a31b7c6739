import logging
from typing import Optional

import stripe

from storefront.config import StripeSettings
from storefront.errors import GatewayError, GatewayUnavailable, PaymentDeclined

logger = logging.getLogger(__name__)

GENERIC_DECLINE = "Your card was declined"

# Failures on our side of the connection, not the customer's card
UNAVAILABLE_ERRORS = (
    stripe.APIConnectionError,
    stripe.APIError,
    stripe.AuthenticationError,
    stripe.PermissionError,
    stripe.RateLimitError,
)

CARD_ERROR_MESSAGES = {
    "card_declined": "Your card was declined",
    "expired_card": "Your card is expired",
    "incorrect_cvc": "Incorrect CVC code",
    "incorrect_zip": "Incorrect zip/postal code",
    "amount_too_large": "The amount is too large to charge to your card",
    "amount_too_small": "The amount is too small to charge to your card",
    "balance_insufficient": "Insufficient balance",
    "postal_code_invalid": "Your postal code is invalid",
}


def card_error_message(code: Optional[str]) -> str:
    return CARD_ERROR_MESSAGES.get(code or "", GENERIC_DECLINE)


class StripeGateway:
    """
    Thin request/response wrapper over the Stripe SDK.

    The secret key is passed on every call rather than assigned to
    ``stripe.api_key``. Stripe's own error text is logged but never
    returned; callers only see the messages from ``card_error_message``
    or a fixed per-operation message.
    """

    def __init__(self, settings: StripeSettings):
        self.settings = settings

    def create_payment_intent(self, currency: str, amount: int):
        try:
            return stripe.PaymentIntent.create(
                api_key=self.settings.secret,
                amount=amount,
                currency=currency,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.CardError as e:
            raise self._declined("create_payment_intent", e) from e
        except stripe.StripeError as e:
            raise self._failed("create_payment_intent", e, "the payment could not be started") from e

    def retrieve_payment_intent(self, payment_intent_id: str):
        try:
            return stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.settings.secret)
        except stripe.StripeError as e:
            raise self._failed("retrieve_payment_intent", e, "the payment could not be found") from e

    def get_payment_method(self, payment_method_id: str):
        try:
            return stripe.PaymentMethod.retrieve(payment_method_id, api_key=self.settings.secret)
        except stripe.StripeError as e:
            raise self._failed("get_payment_method", e, "the payment method could not be found") from e

    def create_customer(self, payment_method: str, name: str, email: str):
        try:
            return stripe.Customer.create(
                api_key=self.settings.secret,
                payment_method=payment_method,
                name=name,
                email=email,
                invoice_settings={"default_payment_method": payment_method},
            )
        except stripe.CardError as e:
            raise self._declined("create_customer", e) from e
        except stripe.StripeError as e:
            raise self._failed("create_customer", e, "the customer could not be created") from e

    def subscribe_to_plan(self, customer_id: str, plan: str, last_four: str, card_type: str = ""):
        try:
            return stripe.Subscription.create(
                api_key=self.settings.secret,
                customer=customer_id,
                items=[{"plan": plan}],
                metadata={"last_four": last_four, "card_type": card_type},
                expand=["latest_invoice.payment_intent"],
            )
        except stripe.CardError as e:
            raise self._declined("subscribe_to_plan", e) from e
        except stripe.StripeError as e:
            raise self._failed("subscribe_to_plan", e, "the subscription could not be created") from e

    def refund(self, payment_intent_id: str, amount: int, idempotency_key: Optional[str] = None):
        try:
            return stripe.Refund.create(
                api_key=self.settings.secret,
                payment_intent=payment_intent_id,
                amount=amount,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            raise self._failed("refund", e, "the charge could not be refunded") from e

    def cancel_subscription(self, subscription_id: str, idempotency_key: Optional[str] = None):
        try:
            return stripe.Subscription.modify(
                subscription_id,
                api_key=self.settings.secret,
                idempotency_key=idempotency_key,
                cancel_at_period_end=True,
            )
        except stripe.StripeError as e:
            raise self._failed("cancel_subscription", e, "the subscription could not be cancelled") from e

    @staticmethod
    def _declined(operation: str, err: "stripe.CardError") -> PaymentDeclined:
        code = getattr(err, "code", None)
        logger.warning(f"Stripe {operation} declined (code={code}): {err}")
        return PaymentDeclined(card_error_message(code), code=code)

    @staticmethod
    def _failed(operation: str, err: "stripe.StripeError", message: str) -> GatewayError:
        code = getattr(err, "code", None)
        if isinstance(err, UNAVAILABLE_ERRORS):
            logger.error(f"Stripe {operation} unavailable ({type(err).__name__}): {err}")
            return GatewayUnavailable(code=code)
        logger.error(f"Stripe {operation} failed (code={code}): {err}")
        return GatewayError(message, code=code)
