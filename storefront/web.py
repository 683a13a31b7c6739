from pathlib import Path

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from storefront.config import Settings
from storefront.invoices import format_amount
from storefront.repository import Repository
from storefront.routes import get_repository, get_settings, get_workflow
from storefront.workflow import CheckoutCustomer, TransactionWorkflow

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
templates.env.filters["money"] = format_amount

router = APIRouter(include_in_schema=False)


@router.get("/", response_class=HTMLResponse)
def home(request: Request):
    return templates.TemplateResponse(request, "home.html", {})


@router.get("/widget/{widget_id}", response_class=HTMLResponse)
def charge_once(
    request: Request,
    widget_id: int,
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    widget = repository.get_widget(widget_id)
    return templates.TemplateResponse(
        request,
        "buy-once.html",
        {"widget": widget, "stripe_key": settings.stripe.key, "currency": settings.stripe.currency},
    )


@router.post("/payment-succeeded", response_class=HTMLResponse)
def payment_succeeded(
    request: Request,
    first_name: str = Form(...),
    last_name: str = Form(...),
    email: str = Form(...),
    payment_intent: str = Form(...),
    payment_method: str = Form(...),
    payment_amount: int = Form(...),
    payment_currency: str = Form(...),
    product_id: int = Form(...),
    workflow: TransactionWorkflow = Depends(get_workflow),
):
    result = workflow.confirm_payment(
        CheckoutCustomer(first_name, last_name, email),
        payment_intent=payment_intent,
        payment_method=payment_method,
        amount=payment_amount,
        currency=payment_currency,
        widget_id=product_id,
    )
    data = {
        "email": email,
        "first_name": first_name,
        "last_name": last_name,
        "pi": payment_intent,
        "pm": payment_method,
        "pa": payment_amount,
        "pc": payment_currency,
        "last_four": result.card.last_four,
        "expiry_month": result.card.expiry_month,
        "expiry_year": result.card.expiry_year,
        "bank_return_code": result.card.bank_return_code,
        "order_id": result.order_id,
    }
    return templates.TemplateResponse(request, "succeeded.html", {"data": data})


@router.get("/admin/virtual-terminal", response_class=HTMLResponse)
def virtual_terminal(request: Request, settings: Settings = Depends(get_settings)):
    """Staff charge page; the recording call itself needs a bearer token."""
    return templates.TemplateResponse(
        request,
        "terminal.html",
        {"stripe_key": settings.stripe.key, "currency": settings.stripe.currency},
    )
