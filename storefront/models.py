import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from storefront.database import Base


class TransactionStatus(enum.IntEnum):
    PENDING = 1
    CLEARED = 2
    DECLINED = 3
    REFUNDED = 4


class OrderStatus(enum.IntEnum):
    PURCHASED = 1
    REFUNDED = 2
    CANCELLED = 3


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the way the DateTime columns store it."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Widget(Base):
    __tablename__ = "widgets"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(String, default="")
    inventory_level = Column(Integer, default=0)
    price = Column(Integer, nullable=False)             # minor units
    image = Column(String(255), default="")
    is_recurring = Column(Boolean, default=False)
    plan_id = Column(String(255), default="")           # Stripe price/plan id
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True)
    first_name = Column(String(255))
    last_name = Column(String(255))
    email = Column(String(255), index=True)             # not unique, one row per checkout
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True)
    amount = Column(Integer, nullable=False)            # minor units
    currency = Column(String(10))
    last_four = Column(String(4))
    expiry_month = Column(Integer)
    expiry_year = Column(Integer)
    payment_intent = Column(String(255), index=True)    # PaymentIntent or Subscription id
    payment_method = Column(String(255))
    bank_return_code = Column(String(255))
    transaction_status_id = Column(Integer, default=TransactionStatus.PENDING)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    widget_id = Column(Integer, ForeignKey("widgets.id"))
    transaction_id = Column(Integer, ForeignKey("transactions.id"))
    customer_id = Column(Integer, ForeignKey("customers.id"))
    status_id = Column(Integer, default=OrderStatus.PURCHASED)
    quantity = Column(Integer, default=1)
    amount = Column(Integer, nullable=False)            # minor units
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    widget = relationship("Widget")
    transaction = relationship("Transaction")
    customer = relationship("Customer")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    first_name = Column(String(255))
    last_name = Column(String(255))
    email = Column(String(255), unique=True, index=True)
    password = Column(String(60))                       # bcrypt hash
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Token(Base):
    __tablename__ = "tokens"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    name = Column(String(255))
    email = Column(String(255))
    token_hash = Column(String(64), unique=True, index=True)   # sha256 hex of the plain token
    scope = Column(String(32), default="authentication")
    expiry = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User")
