import logging
import math
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import joinedload, sessionmaker

from storefront.errors import NotFound
from storefront.models import Customer, Order, OrderStatus, Token, Transaction, User, Widget, utcnow

logger = logging.getLogger(__name__)


class Repository:
    """
    Persistence gateway. Every method runs in its own session and commits
    at most once, so each call is its own atomic unit.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # -- catalog ---------------------------------------------------------

    def get_widget(self, widget_id: int) -> Widget:
        with self.session_factory() as db:
            widget = db.get(Widget, widget_id)
            if widget is None:
                raise NotFound(f"widget {widget_id} not found")
            return widget

    # -- checkout --------------------------------------------------------

    def insert_customer(self, first_name: str, last_name: str, email: str) -> int:
        with self.session_factory() as db:
            customer = Customer(first_name=first_name, last_name=last_name, email=email)
            db.add(customer)
            db.commit()
            return customer.id

    def insert_transaction(self, txn: Transaction) -> int:
        with self.session_factory() as db:
            db.add(txn)
            db.commit()
            return txn.id

    def insert_order(self, order: Order) -> int:
        with self.session_factory() as db:
            db.add(order)
            db.commit()
            return order.id

    def update_order_status(
        self, order_id: int, status: OrderStatus, expected: Optional[OrderStatus] = None
    ) -> bool:
        """
        Set the status of an order. With ``expected``, the row is only changed
        while it still has that status; returns whether it was changed.
        """
        stmt = update(Order).where(Order.id == order_id).values(status_id=int(status), updated_at=utcnow())
        if expected is not None:
            stmt = stmt.where(Order.status_id == int(expected))

        with self.session_factory() as db:
            result = db.execute(stmt)
            db.commit()
            if result.rowcount == 1:
                return True
            if db.get(Order, order_id) is None:
                raise NotFound(f"order {order_id} not found")
            return False

    # -- admin -----------------------------------------------------------

    def get_order(self, order_id: int) -> Order:
        with self.session_factory() as db:
            order = db.scalars(
                select(Order)
                .options(
                    joinedload(Order.widget),
                    joinedload(Order.transaction),
                    joinedload(Order.customer),
                )
                .where(Order.id == order_id)
            ).first()
            if order is None:
                raise NotFound(f"order {order_id} not found")
            return order

    def get_orders_paginated(self, page: int, page_size: int) -> Tuple[List[Order], int, int]:
        return self._paginate(page, page_size, recurring=False)

    def get_subscriptions_paginated(self, page: int, page_size: int) -> Tuple[List[Order], int, int]:
        return self._paginate(page, page_size, recurring=True)

    def _paginate(self, page: int, page_size: int, recurring: bool) -> Tuple[List[Order], int, int]:
        offset = (page - 1) * page_size
        with self.session_factory() as db:
            total_records = db.scalar(
                select(func.count(Order.id))
                .join(Widget, Order.widget_id == Widget.id)
                .where(Widget.is_recurring == recurring)
            )
            orders = db.scalars(
                select(Order)
                .join(Widget, Order.widget_id == Widget.id)
                .options(
                    joinedload(Order.widget),
                    joinedload(Order.transaction),
                    joinedload(Order.customer),
                )
                .where(Widget.is_recurring == recurring)
                .order_by(Order.created_at.desc(), Order.id.desc())
                .limit(page_size)
                .offset(offset)
            ).all()

        last_page = math.ceil(total_records / page_size) if total_records else 1
        return list(orders), last_page, total_records

    # -- users & tokens ----------------------------------------------------

    def get_user_by_email(self, email: str) -> User:
        with self.session_factory() as db:
            user = db.scalars(select(User).where(User.email == email.lower())).first()
            if user is None:
                raise NotFound("no matching user found")
            return user

    def update_password_for_user(self, user: User, password_hash: str) -> None:
        with self.session_factory() as db:
            row = db.get(User, user.id)
            if row is None:
                raise NotFound("no matching user found")
            row.password = password_hash
            row.updated_at = utcnow()
            db.commit()

    def insert_token(self, token_hash: str, user: User, expiry: datetime, scope: str) -> None:
        """Store a token hash for ``user``, replacing any tokens it already had."""
        with self.session_factory() as db:
            for old in db.scalars(select(Token).where(Token.user_id == user.id)).all():
                db.delete(old)
            db.add(
                Token(
                    user_id=user.id,
                    name=user.last_name,
                    email=user.email,
                    token_hash=token_hash,
                    scope=scope,
                    expiry=expiry,
                )
            )
            db.commit()

    def get_user_for_token(self, token_hash: str, now: Optional[datetime] = None) -> User:
        now = now or utcnow()
        with self.session_factory() as db:
            user = db.scalars(
                select(User)
                .join(Token, Token.user_id == User.id)
                .where(Token.token_hash == token_hash, Token.expiry > now)
            ).first()
            if user is None:
                raise NotFound("no matching user found")
            return user
