import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from storefront import auth
from storefront.auth import verify_token
from storefront.config import Settings
from storefront.errors import BadRequest, NotFound
from storefront.invoices import Invoice
from storefront.mailer import Mailer
from storefront.models import User
from storefront.repository import Repository
from storefront.schemas import (
    CancelSubscriptionRequest,
    CredentialsRequest,
    Envelope,
    ForgotPasswordRequest,
    InvoiceRequest,
    OrderOut,
    OrdersPage,
    PageRequest,
    PaymentIntentRequest,
    PaymentSucceededRequest,
    RefundRequest,
    ResetPasswordRequest,
    SubscribeRequest,
    TerminalPaymentRequest,
    TransactionOut,
    WidgetOut,
)
from storefront.workflow import CheckoutCustomer, TransactionWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")
admin_router = APIRouter(prefix="/api/admin", dependencies=[Depends(verify_token)])
invoice_router = APIRouter(prefix="/invoice")


def get_workflow(request: Request) -> TransactionWorkflow:
    return request.app.state.workflow


def get_repository(request: Request) -> Repository:
    return request.app.state.repository


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


# -- storefront ---------------------------------------------------------------


@router.post("/payment-intent")
def get_payment_intent(
    payload: PaymentIntentRequest,
    workflow: TransactionWorkflow = Depends(get_workflow),
):
    intent = workflow.charge(payload.currency, payload.amount)
    return Envelope(
        content={
            "id": intent.id,
            "client_secret": intent.client_secret,
            "amount": payload.amount,
            "currency": payload.currency.lower(),
        }
    )


@router.get("/widget/{widget_id}")
def get_widget_by_id(widget_id: int, repository: Repository = Depends(get_repository)):
    widget = repository.get_widget(widget_id)
    return Envelope(content=WidgetOut.model_validate(widget).model_dump(mode="json"))


@router.post("/create-customer-and-subscribe-to-plan")
def create_customer_and_subscribe_to_plan(
    payload: SubscribeRequest,
    workflow: TransactionWorkflow = Depends(get_workflow),
):
    logger.info(f"Subscribing {payload.email} to plan {payload.plan}")
    result = workflow.subscribe(
        CheckoutCustomer(payload.first_name, payload.last_name, payload.email),
        payment_method=payload.payment_method,
        plan=payload.plan,
        widget_id=payload.product_id,
        amount=payload.amount,
        last_four=payload.last_four,
        card_brand=payload.card_brand,
        expiry_month=payload.exp_month,
        expiry_year=payload.exp_year,
        currency=payload.currency,
    )
    return Envelope(message="Transaction successful", content={"order_id": result.order_id})


@router.post("/payment-succeeded")
def payment_succeeded(
    payload: PaymentSucceededRequest,
    workflow: TransactionWorkflow = Depends(get_workflow),
):
    result = workflow.confirm_payment(
        CheckoutCustomer(payload.first_name, payload.last_name, payload.email),
        payment_intent=payload.payment_intent,
        payment_method=payload.payment_method,
        amount=payload.amount,
        currency=payload.currency,
        widget_id=payload.product_id,
    )
    return Envelope(
        message="Payment succeeded",
        content={
            "order_id": result.order_id,
            "transaction_id": result.transaction_id,
            "last_four": result.card.last_four,
            "bank_return_code": result.card.bank_return_code,
        },
    )


# -- authentication -----------------------------------------------------------


@router.post("/authenticate")
def create_auth_token(
    payload: CredentialsRequest,
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    token, expiry, _ = auth.authenticate(repository, settings, payload.email, payload.password)
    return Envelope(
        message=f"token for {payload.email} created",
        content={"authentication_token": {"token": token, "expiry": expiry.isoformat()}},
    )


@router.post("/is-authenticated")
def check_authenticated(user: User = Depends(verify_token)):
    return Envelope(message=f"authenticated user {user.email}")


@router.post("/forgot-password")
def send_password_reset_email(
    payload: ForgotPasswordRequest,
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
    mailer: Mailer = Depends(get_mailer),
):
    try:
        user = repository.get_user_by_email(payload.email)
    except NotFound:
        body = Envelope(error=True, message="no matching email found on our system")
        return JSONResponse(status_code=202, content=body.model_dump())

    data = {
        "link": auth.make_reset_link(settings, user.email),
        "expires_in": settings.reset_link_ttl_minutes,
    }
    mailer.send(settings.mail_from, user.email, "Password Reset Request", "password-reset", data)
    return Envelope(message="Email sent")


@router.post("/reset-password")
def reset_password(
    payload: ResetPasswordRequest,
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    email = auth.email_from_reset_token(settings, payload.token)
    try:
        user = repository.get_user_by_email(email)
    except NotFound:
        raise BadRequest("invalid or expired link")

    repository.update_password_for_user(user, auth.hash_password(payload.password))
    logger.info(f"Password changed for user {user.id}")
    return Envelope(message="password changed")


# -- admin --------------------------------------------------------------------


@admin_router.post("/virtual-terminal-succeeded")
def virtual_terminal_payment_succeeded(
    payload: TerminalPaymentRequest,
    workflow: TransactionWorkflow = Depends(get_workflow),
):
    txn = workflow.record_terminal_payment(
        payload.payment_intent, payload.payment_method, payload.amount, payload.currency
    )
    return Envelope(
        message="Virtual terminal payment succeeded",
        content=TransactionOut.model_validate(txn).model_dump(mode="json"),
    )


def _orders_page(payload: PageRequest, orders, last_page: int, total_records: int) -> Envelope:
    page = OrdersPage(
        current_page=payload.page,
        page_size=payload.page_size,
        last_page=last_page,
        total_records=total_records,
        orders=[OrderOut.model_validate(o) for o in orders],
    )
    return Envelope(content=page.model_dump(mode="json"))


@admin_router.post("/all-sales")
def all_sales(payload: PageRequest, repository: Repository = Depends(get_repository)):
    orders, last_page, total = repository.get_orders_paginated(payload.page, payload.page_size)
    return _orders_page(payload, orders, last_page, total)


@admin_router.post("/all-subscriptions")
def all_subscriptions(payload: PageRequest, repository: Repository = Depends(get_repository)):
    orders, last_page, total = repository.get_subscriptions_paginated(payload.page, payload.page_size)
    return _orders_page(payload, orders, last_page, total)


@admin_router.get("/get-sale/{order_id}")
def get_sale(order_id: int, repository: Repository = Depends(get_repository)):
    order = repository.get_order(order_id)
    return Envelope(content=OrderOut.model_validate(order).model_dump(mode="json"))


@admin_router.post("/refund")
def refund_charge(payload: RefundRequest, workflow: TransactionWorkflow = Depends(get_workflow)):
    workflow.refund(payload.id, payload.pi, payload.amount)
    return Envelope(message="Charge refunded")


@admin_router.post("/cancel-subscription")
def cancel_subscription(
    payload: CancelSubscriptionRequest,
    workflow: TransactionWorkflow = Depends(get_workflow),
):
    workflow.cancel_subscription(payload.id, payload.pi)
    return Envelope(message="Subscription cancelled")


# -- invoices -----------------------------------------------------------------


@invoice_router.post("/create-and-send")
def create_and_send_invoice(
    payload: InvoiceRequest,
    workflow: TransactionWorkflow = Depends(get_workflow),
):
    invoice = Invoice(**payload.model_dump())
    path = workflow.issue_invoice(invoice)
    return Envelope(message=f"invoice {path.name} created and sent to {invoice.email}")
