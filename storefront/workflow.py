"""
Order and payment workflows.

Each business operation is a short sequence of gateway calls and single-row
writes. The sequence as a whole is not atomic: once the gateway has acted,
a later persistence failure is reported as ``ReconciliationNeeded`` with the
gateway identifiers attached, and nothing already done is undone.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from storefront.config import Settings
from storefront.errors import (
    BadRequest,
    MailDeliveryError,
    NotFound,
    PersistenceError,
    ReconciliationNeeded,
)
from storefront.invoices import Invoice, InvoiceRenderer
from storefront.mailer import Mailer
from storefront.models import Order, OrderStatus, Transaction, TransactionStatus, utcnow
from storefront.repository import Repository
from storefront.stripe_service import StripeGateway

logger = logging.getLogger(__name__)

ALREADY_DONE = {
    OrderStatus.REFUNDED: "this order has already been refunded",
    OrderStatus.CANCELLED: "this subscription has already been cancelled",
}


@dataclass
class CheckoutCustomer:
    first_name: str
    last_name: str
    email: str


@dataclass
class CardDetails:
    last_four: str
    expiry_month: int
    expiry_year: int
    bank_return_code: str


@dataclass
class CheckoutResult:
    customer_id: int
    transaction_id: int
    order_id: Optional[int]
    card: CardDetails


def _charge_id(payment_intent) -> str:
    charge = getattr(payment_intent, "latest_charge", None)
    if charge is None:
        return ""
    if isinstance(charge, str):
        return charge
    return getattr(charge, "id", "") or ""


class TransactionWorkflow:
    def __init__(
        self,
        gateway: StripeGateway,
        repository: Repository,
        mailer: Mailer,
        renderer: InvoiceRenderer,
        settings: Settings,
    ):
        self.gateway = gateway
        self.repository = repository
        self.mailer = mailer
        self.renderer = renderer
        self.settings = settings
        # serialises check, gateway call and status update for admin changes
        self._status_lock = threading.Lock()

    # -- one-off charge ----------------------------------------------------

    def charge(self, currency: str, amount: int):
        """Create a payment intent; the client completes the charge."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise BadRequest("amount must be a positive integer number of minor units")
        if not currency:
            raise BadRequest("currency is required")

        intent = self.gateway.create_payment_intent(currency.lower(), amount)
        logger.info(f"Created payment intent {intent.id} for {amount} {currency}")
        return intent

    # -- subscriptions -----------------------------------------------------

    def subscribe(
        self,
        customer: CheckoutCustomer,
        payment_method: str,
        plan: str,
        widget_id: int,
        amount: int,
        last_four: str,
        card_brand: str = "",
        expiry_month: int = 0,
        expiry_year: int = 0,
        currency: Optional[str] = None,
    ) -> CheckoutResult:
        name = f"{customer.first_name} {customer.last_name}".strip()
        stripe_customer = self.gateway.create_customer(payment_method, name, customer.email)
        subscription = self.gateway.subscribe_to_plan(stripe_customer.id, plan, last_four, card_brand)
        logger.info(f"Subscription {subscription.id} created for stripe customer {stripe_customer.id}")

        remote = {"stripe_customer": stripe_customer.id, "subscription": subscription.id}
        card = CardDetails(last_four, expiry_month, expiry_year, "")
        try:
            customer_id = self.repository.insert_customer(
                customer.first_name, customer.last_name, customer.email
            )
            txn_id = self.repository.insert_transaction(
                Transaction(
                    amount=amount,
                    currency=currency or self.settings.stripe.currency,
                    last_four=last_four,
                    expiry_month=expiry_month,
                    expiry_year=expiry_year,
                    payment_intent=subscription.id,
                    payment_method=payment_method,
                    bank_return_code="",
                    transaction_status_id=int(TransactionStatus.CLEARED),
                )
            )
            order_id = self.repository.insert_order(
                self._new_order(widget_id, txn_id, customer_id, amount)
            )
        except SQLAlchemyError as e:
            logger.critical(f"Subscription {subscription.id} is live but was not recorded: {e}")
            raise ReconciliationNeeded(
                "the subscription was created, but the database could not be updated",
                content=remote,
            ) from e

        return CheckoutResult(customer_id, txn_id, order_id, card)

    # -- deferred confirmation --------------------------------------------

    def _card_details(self, payment_intent_id: str, payment_method_id: str) -> CardDetails:
        intent = self.gateway.retrieve_payment_intent(payment_intent_id)
        method = self.gateway.get_payment_method(payment_method_id)
        # card details are taken from the gateway as-is
        return CardDetails(
            last_four=method.card.last4,
            expiry_month=int(method.card.exp_month),
            expiry_year=int(method.card.exp_year),
            bank_return_code=_charge_id(intent),
        )

    def _cleared_transaction(
        self, card: CardDetails, amount: int, currency: str, payment_intent: str, payment_method: str
    ) -> Transaction:
        return Transaction(
            amount=amount,
            currency=currency,
            last_four=card.last_four,
            expiry_month=card.expiry_month,
            expiry_year=card.expiry_year,
            payment_intent=payment_intent,
            payment_method=payment_method,
            bank_return_code=card.bank_return_code,
            transaction_status_id=int(TransactionStatus.CLEARED),
        )

    def confirm_payment(
        self,
        customer: CheckoutCustomer,
        payment_intent: str,
        payment_method: str,
        amount: int,
        currency: str,
        widget_id: int,
    ) -> CheckoutResult:
        """Record a charge that the client already completed."""
        card = self._card_details(payment_intent, payment_method)

        remote = {"payment_intent": payment_intent}
        try:
            customer_id = self.repository.insert_customer(
                customer.first_name, customer.last_name, customer.email
            )
            txn_id = self.repository.insert_transaction(
                self._cleared_transaction(card, amount, currency, payment_intent, payment_method)
            )
            order_id = self.repository.insert_order(
                self._new_order(widget_id, txn_id, customer_id, amount)
            )
        except SQLAlchemyError as e:
            logger.critical(f"Payment {payment_intent} succeeded but was not recorded: {e}")
            raise ReconciliationNeeded(content=remote) from e

        logger.info(f"Order {order_id} recorded for payment {payment_intent}")
        return CheckoutResult(customer_id, txn_id, order_id, card)

    def record_terminal_payment(
        self, payment_intent: str, payment_method: str, amount: int, currency: str
    ) -> Transaction:
        """Virtual terminal charges keep a transaction only, no customer or order."""
        card = self._card_details(payment_intent, payment_method)
        txn = self._cleared_transaction(card, amount, currency, payment_intent, payment_method)
        try:
            self.repository.insert_transaction(txn)
        except SQLAlchemyError as e:
            logger.critical(f"Terminal payment {payment_intent} succeeded but was not recorded: {e}")
            raise ReconciliationNeeded(content={"payment_intent": payment_intent}) from e
        return txn

    # -- refunds & cancellations ------------------------------------------

    def _purchased_order(self, order_id: int) -> Order:
        try:
            order = self.repository.get_order(order_id)
        except SQLAlchemyError as e:
            logger.error(f"Could not load order {order_id}: {e}")
            raise PersistenceError() from e

        if order.status_id in ALREADY_DONE:
            raise BadRequest(ALREADY_DONE[OrderStatus(order.status_id)])
        return order

    def _mark_order(self, order_id: int, status: OrderStatus, stale_message: str, remote: dict) -> None:
        try:
            changed = self.repository.update_order_status(order_id, status, expected=OrderStatus.PURCHASED)
        except (SQLAlchemyError, NotFound) as e:
            logger.critical(f"Order {order_id} changed at the gateway but not updated locally: {e}")
            raise ReconciliationNeeded(stale_message, content=remote) from e

        if not changed:
            # another worker moved the order on first; the gateway call was keyed to the order
            logger.warning(f"Order {order_id} was no longer purchased when marking it {status.name}")
            raise BadRequest(ALREADY_DONE[status])

    def refund(self, order_id: int, payment_intent: str, amount: int) -> None:
        if isinstance(amount, bool) or amount <= 0:
            raise BadRequest("amount must be a positive integer number of minor units")

        with self._status_lock:
            order = self._purchased_order(order_id)
            if order.transaction is None or order.transaction.payment_intent != payment_intent:
                raise BadRequest("the payment intent does not belong to this order")
            if amount > order.amount:
                raise BadRequest("the refund amount is larger than the order amount")

            self.gateway.refund(payment_intent, amount, idempotency_key=f"refund-{order_id}")
            logger.info(f"Refunded {amount} on {payment_intent} for order {order_id}")

            self._mark_order(
                order_id,
                OrderStatus.REFUNDED,
                "the charge was refunded, but the database could not be updated",
                {"order_id": order_id, "payment_intent": payment_intent},
            )

    def cancel_subscription(self, order_id: int, subscription_id: str) -> None:
        with self._status_lock:
            order = self._purchased_order(order_id)
            if order.widget is None or not order.widget.is_recurring:
                raise BadRequest("this order is not a subscription")
            if order.transaction is None or order.transaction.payment_intent != subscription_id:
                raise BadRequest("the subscription does not belong to this order")

            self.gateway.cancel_subscription(subscription_id, idempotency_key=f"cancel-{order_id}")
            logger.info(f"Subscription {subscription_id} for order {order_id} set to cancel at period end")

            self._mark_order(
                order_id,
                OrderStatus.CANCELLED,
                "the subscription was cancelled, but the database could not be updated",
                {"order_id": order_id, "subscription": subscription_id},
            )

    # -- invoices ----------------------------------------------------------

    def issue_invoice(self, invoice: Invoice):
        path = self.renderer.render(invoice)
        try:
            self.mailer.send(
                self.settings.mail_from,
                invoice.email,
                "Your invoice",
                "invoice",
                invoice.as_dict(),
                attachments=[path],
            )
        except MailDeliveryError as e:
            raise MailDeliveryError(f"invoice {path.name} was created but could not be sent") from e
        return path

    # --------------------------------------------------------------------

    @staticmethod
    def _new_order(widget_id: int, txn_id: int, customer_id: int, amount: int) -> Order:
        now = utcnow()
        return Order(
            widget_id=widget_id,
            transaction_id=txn_id,
            customer_id=customer_id,
            status_id=int(OrderStatus.PURCHASED),
            quantity=1,
            amount=amount,
            created_at=now,
            updated_at=now,
        )
