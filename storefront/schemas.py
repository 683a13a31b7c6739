from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Envelope(BaseModel):
    error: bool = False
    message: str = ""
    content: Any = None


# -- requests ---------------------------------------------------------------


class PaymentIntentRequest(BaseModel):
    currency: str = "eur"
    amount: int


class CheckoutFields(BaseModel):
    first_name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")


class SubscribeRequest(CheckoutFields):
    payment_method: str = Field(min_length=1)
    plan: str = Field(min_length=1)
    product_id: int
    amount: int = Field(ge=0)
    currency: Optional[str] = None
    card_brand: str = ""
    exp_month: int = 0
    exp_year: int = 0
    last_four: str = Field(default="", max_length=4)


class PaymentSucceededRequest(CheckoutFields):
    payment_intent: str = Field(min_length=1)
    payment_method: str = Field(min_length=1)
    amount: int = Field(ge=0)
    currency: str = "eur"
    product_id: int


class TerminalPaymentRequest(BaseModel):
    amount: int = Field(ge=0)
    currency: str = "eur"
    payment_intent: str = Field(min_length=1)
    payment_method: str = Field(min_length=1)


class CredentialsRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(min_length=3)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=6)


class PageRequest(BaseModel):
    page_size: int = Field(default=10, ge=1, le=100)
    page: int = Field(default=1, ge=1)


class RefundRequest(BaseModel):
    id: int
    pi: str = Field(min_length=1)
    amount: int


class CancelSubscriptionRequest(BaseModel):
    id: int
    pi: str = Field(min_length=1)


class InvoiceRequest(BaseModel):
    id: int
    quantity: int = Field(ge=1)
    amount: int = Field(ge=0)
    product: str = Field(min_length=1)
    first_name: str
    last_name: str
    email: str = Field(min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    created_at: datetime


# -- responses --------------------------------------------------------------


class WidgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = ""
    inventory_level: Optional[int] = 0
    price: int
    image: Optional[str] = ""
    is_recurring: bool = False
    plan_id: Optional[str] = ""


class CustomerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: Optional[str]
    last_name: Optional[str]
    email: Optional[str]


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: int
    currency: Optional[str]
    last_four: Optional[str]
    expiry_month: Optional[int]
    expiry_year: Optional[int]
    payment_intent: Optional[str]
    payment_method: Optional[str]
    bank_return_code: Optional[str]
    transaction_status_id: int


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    widget_id: int
    transaction_id: int
    customer_id: int
    status_id: int
    quantity: int
    amount: int
    created_at: datetime
    updated_at: datetime
    widget: Optional[WidgetOut] = None
    transaction: Optional[TransactionOut] = None
    customer: Optional[CustomerOut] = None


class OrdersPage(BaseModel):
    current_page: int
    page_size: int
    last_page: int
    total_records: int
    orders: List[OrderOut]
