from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import stripe
from sqlalchemy.exc import OperationalError

from storefront.errors import (
    BadRequest,
    GatewayError,
    InvoiceRenderError,
    MailDeliveryError,
    PaymentDeclined,
    ReconciliationNeeded,
)
from storefront.invoices import InvoiceRenderer
from storefront.models import OrderStatus, utcnow
from storefront.stripe_service import CARD_ERROR_MESSAGES, StripeGateway
from storefront.workflow import CheckoutCustomer, TransactionWorkflow

DB_DOWN = OperationalError("INSERT", {}, Exception("database is locked"))


def _order(status=OrderStatus.PURCHASED, payment_intent="pi_123", amount=1000, recurring=False):
    order = MagicMock(id=3, status_id=int(status), amount=amount)
    order.transaction.payment_intent = payment_intent
    order.widget.is_recurring = recurring
    return order


@pytest.fixture
def gateway():
    gw = MagicMock(spec=StripeGateway)
    gw.create_customer.return_value = MagicMock(id="cus_123")
    gw.subscribe_to_plan.return_value = MagicMock(id="sub_123")
    gw.retrieve_payment_intent.return_value = MagicMock(id="pi_123", latest_charge="ch_123")
    method = MagicMock()
    method.card.last4 = "4242"
    method.card.exp_month = 12
    method.card.exp_year = 2030
    gw.get_payment_method.return_value = method
    return gw


@pytest.fixture
def repository():
    repo = MagicMock()
    repo.insert_customer.return_value = 1
    repo.insert_transaction.return_value = 2
    repo.insert_order.return_value = 3
    repo.get_order.return_value = _order()
    return repo


@pytest.fixture
def workflow(gateway, repository, settings):
    return TransactionWorkflow(
        gateway=gateway,
        repository=repository,
        mailer=MagicMock(),
        renderer=MagicMock(spec=InvoiceRenderer),
        settings=settings,
    )


JANE = CheckoutCustomer("Jane", "Doe", "jane@example.com")


def _subscribe(workflow):
    return workflow.subscribe(
        JANE,
        payment_method="pm_123",
        plan="price_bronze",
        widget_id=2,
        amount=2000,
        last_four="4242",
        card_brand="visa",
    )


@pytest.mark.parametrize("code", sorted(CARD_ERROR_MESSAGES) + ["processing_error", None])
def test_charge_reports_only_mapped_messages(code, settings, repository, mocker):
    mocker.patch(
        "stripe.PaymentIntent.create",
        side_effect=stripe.CardError("upstream says no", None, code),
    )
    workflow = TransactionWorkflow(StripeGateway(settings.stripe), repository, MagicMock(), MagicMock(), settings)

    with pytest.raises(PaymentDeclined) as exc:
        workflow.charge("eur", 1000)

    assert exc.value.message in set(CARD_ERROR_MESSAGES.values())
    assert "upstream says no" not in exc.value.message
    repository.insert_transaction.assert_not_called()


@pytest.mark.parametrize("amount", [0, -5, True])
def test_charge_rejects_bad_amounts(workflow, gateway, amount):
    with pytest.raises(BadRequest):
        workflow.charge("eur", amount)
    gateway.create_payment_intent.assert_not_called()


def test_subscribe_persists_customer_transaction_and_order(workflow, gateway, repository):
    result = _subscribe(workflow)

    assert (result.customer_id, result.transaction_id, result.order_id) == (1, 2, 3)
    gateway.create_customer.assert_called_once_with("pm_123", "Jane Doe", "jane@example.com")
    gateway.subscribe_to_plan.assert_called_once_with("cus_123", "price_bronze", "4242", "visa")
    txn = repository.insert_transaction.call_args.args[0]
    assert txn.payment_intent == "sub_123"
    assert txn.transaction_status_id == 2
    order = repository.insert_order.call_args.args[0]
    assert (order.widget_id, order.transaction_id, order.customer_id, order.quantity) == (2, 2, 1, 1)


def test_subscribe_customer_failure_persists_nothing(workflow, gateway, repository):
    gateway.create_customer.side_effect = PaymentDeclined("Your card was declined", code="card_declined")

    with pytest.raises(PaymentDeclined):
        _subscribe(workflow)

    gateway.subscribe_to_plan.assert_not_called()
    repository.insert_customer.assert_not_called()


def test_subscribe_local_failure_keeps_remote_subscription(workflow, gateway, repository):
    repository.insert_transaction.side_effect = DB_DOWN

    with pytest.raises(ReconciliationNeeded) as exc:
        _subscribe(workflow)

    gateway.subscribe_to_plan.assert_called_once()
    gateway.cancel_subscription.assert_not_called()
    repository.insert_order.assert_not_called()
    assert exc.value.content == {"stripe_customer": "cus_123", "subscription": "sub_123"}


def test_confirm_payment_uses_gateway_card_details(workflow, repository):
    result = workflow.confirm_payment(JANE, "pi_123", "pm_123", 1000, "eur", widget_id=1)

    txn = repository.insert_transaction.call_args.args[0]
    assert (txn.last_four, txn.expiry_month, txn.expiry_year) == ("4242", 12, 2030)
    assert txn.bank_return_code == "ch_123"
    assert result.order_id == 3


def test_confirm_payment_retrieval_failure_stops_early(workflow, gateway, repository):
    gateway.get_payment_method.side_effect = GatewayError("the payment method could not be found")

    with pytest.raises(GatewayError):
        workflow.confirm_payment(JANE, "pi_123", "pm_123", 1000, "eur", widget_id=1)

    repository.insert_customer.assert_not_called()


def test_confirm_payment_keeps_earlier_writes(workflow, repository):
    repository.insert_order.side_effect = DB_DOWN

    with pytest.raises(ReconciliationNeeded):
        workflow.confirm_payment(JANE, "pi_123", "pm_123", 1000, "eur", widget_id=1)

    repository.insert_customer.assert_called_once()
    repository.insert_transaction.assert_called_once()


def test_refund_updates_order_status(workflow, gateway, repository):
    workflow.refund(3, "pi_123", 1000)

    gateway.refund.assert_called_once_with("pi_123", 1000, idempotency_key="refund-3")
    repository.update_order_status.assert_called_once_with(3, OrderStatus.REFUNDED, expected=OrderStatus.PURCHASED)


def test_refund_of_refunded_order_never_reaches_gateway(workflow, gateway, repository):
    repository.get_order.return_value = _order(OrderStatus.REFUNDED)

    with pytest.raises(BadRequest):
        workflow.refund(3, "pi_123", 1000)

    gateway.refund.assert_not_called()


def test_refund_gateway_failure_leaves_order_alone(workflow, gateway, repository):
    gateway.refund.side_effect = GatewayError("the charge could not be refunded")

    with pytest.raises(GatewayError):
        workflow.refund(3, "pi_123", 1000)

    repository.update_order_status.assert_not_called()


def test_cancel_subscription_stale_state_is_reported(workflow, gateway, repository):
    repository.get_order.return_value = _order(payment_intent="sub_123", recurring=True)
    repository.update_order_status.side_effect = DB_DOWN

    with pytest.raises(ReconciliationNeeded) as exc:
        workflow.cancel_subscription(3, "sub_123")

    gateway.cancel_subscription.assert_called_once_with("sub_123", idempotency_key="cancel-3")
    assert exc.value.message == "the subscription was cancelled, but the database could not be updated"


def test_issue_invoice_render_failure_skips_mail(workflow):
    workflow.renderer.render.side_effect = InvoiceRenderError()

    with pytest.raises(InvoiceRenderError):
        workflow.issue_invoice(MagicMock(email="jane@example.com"))

    workflow.mailer.send.assert_not_called()


def test_issue_invoice_mail_failure_is_distinct(workflow, tmp_path):
    workflow.renderer.render.return_value = tmp_path / "100.pdf"
    workflow.mailer.send.side_effect = MailDeliveryError()

    with pytest.raises(MailDeliveryError) as exc:
        workflow.issue_invoice(MagicMock(email="jane@example.com"))

    assert "100.pdf" in exc.value.message
    workflow.mailer.send.assert_called_once()


def test_subscribe_plan_failure_persists_nothing(workflow, gateway, repository):
    gateway.subscribe_to_plan.side_effect = PaymentDeclined("Your card was declined", code="card_declined")

    with pytest.raises(PaymentDeclined):
        _subscribe(workflow)

    gateway.create_customer.assert_called_once()
    repository.insert_customer.assert_not_called()
    repository.insert_transaction.assert_not_called()
    repository.insert_order.assert_not_called()


@pytest.mark.parametrize(
    "payment_intent, amount, message",
    [
        ("pi_other", 1000, "the payment intent does not belong to this order"),
        ("pi_123", 1001, "the refund amount is larger than the order amount"),
    ],
)
def test_refund_must_match_the_order(workflow, gateway, repository, payment_intent, amount, message):
    with pytest.raises(BadRequest) as exc:
        workflow.refund(3, payment_intent, amount)

    assert exc.value.message == message
    gateway.refund.assert_not_called()
    repository.update_order_status.assert_not_called()


def test_partial_refund_is_allowed(workflow, gateway):
    workflow.refund(3, "pi_123", 400)

    gateway.refund.assert_called_once_with("pi_123", 400, idempotency_key="refund-3")


def test_refund_loses_race_to_another_worker(workflow, gateway, repository):
    repository.update_order_status.return_value = False

    with pytest.raises(BadRequest) as exc:
        workflow.refund(3, "pi_123", 1000)

    assert exc.value.message == "this order has already been refunded"
    gateway.refund.assert_called_once_with("pi_123", 1000, idempotency_key="refund-3")


def test_cancel_rejects_one_off_orders(workflow, gateway, repository):
    repository.get_order.return_value = _order(payment_intent="sub_123", recurring=False)

    with pytest.raises(BadRequest) as exc:
        workflow.cancel_subscription(3, "sub_123")

    assert exc.value.message == "this order is not a subscription"
    gateway.cancel_subscription.assert_not_called()


def test_cancel_rejects_foreign_subscription(workflow, gateway, repository):
    repository.get_order.return_value = _order(payment_intent="sub_123", recurring=True)

    with pytest.raises(BadRequest):
        workflow.cancel_subscription(3, "sub_other")

    gateway.cancel_subscription.assert_not_called()


def test_new_orders_are_stamped_in_naive_utc():
    before = datetime.now(timezone.utc).replace(tzinfo=None)
    order = TransactionWorkflow._new_order(1, 2, 3, 1000)
    after = utcnow()

    assert order.created_at.tzinfo is None
    assert before <= order.created_at <= after
    assert order.updated_at == order.created_at
